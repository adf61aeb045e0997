"""Operational status endpoint: token lifecycle, reconciler counters and mapping count."""

import cherrypy

from pagesdns.app import utils
from pagesdns.app.api import json_response


class StatusAPI:
    """Exposes GET /status as a JSON status document.

    Overall ``status`` field:
    - ``ok``       token cached and valid, refresh checker running
    - ``degraded`` token missing or expiring, or DNS calls have failed
    - ``error``    the background refresh checker is not alive
    """

    def __init__(self, token_manager, reconciler):
        self._tm = token_manager
        self._reconciler = reconciler

    @cherrypy.expose
    def index(self):
        return json_response(self._build())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _build(self) -> dict:
        token = self._tm.get_status()
        reconcile = self._reconciler.get_status()
        return {
            "status": self._compute_overall(token, reconcile),
            "token": token,
            "reconciler": reconcile,
            "mappings": {"total": self._mapping_count()},
        }

    @staticmethod
    def _mapping_count() -> int:
        try:
            return utils.count_domain_mappings()
        except Exception:
            return 0

    @staticmethod
    def _compute_overall(token: dict, reconcile: dict) -> str:
        if not token.get("checker_alive"):
            return "error"
        if not token.get("valid") or reconcile.get("dns_failures", 0) > 0:
            return "degraded"
        return "ok"
