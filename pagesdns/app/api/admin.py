import cherrypy
from loguru import logger

from pagesdns.app import utils
from pagesdns.app.api import json_response, read_json_body
from pagesdns.app.errors import ValidationError
from pagesdns.app.utils.sanitize import is_valid_domain, normalize_domain

GENERIC_ERROR = "Internal server error"


class AdminAPI:
    """Operator endpoints mounted under /admin (basic auth).

    Failures surface as 4xx/5xx, but the body of a 5xx never carries the
    underlying error text.
    """

    def __init__(self, token_manager, dns_registry, target_domain: str = ""):
        self.token_manager = token_manager
        self.dns_registry = dns_registry
        self.target_domain = target_domain or ""

    @cherrypy.expose
    def index(self):
        return json_response(
            {
                "endpoints": [
                    "POST /admin/refresh_token",
                    "POST /admin/update_cname",
                    "POST|PATCH /admin/installations",
                    "POST|DELETE /admin/mappings",
                ]
            }
        )

    @cherrypy.expose
    def refresh_token(self):
        if cherrypy.request.method != "POST":
            return json_response({"error": "Method not allowed"}, 405)
        return self._guarded("refresh_token", self._refresh_token)

    @cherrypy.expose
    def update_cname(self):
        if cherrypy.request.method != "POST":
            return json_response({"error": "Method not allowed"}, 405)
        return self._guarded("update_cname", lambda: self._update_cname(read_json_body()))

    @cherrypy.expose
    def installations(self):
        method = cherrypy.request.method
        if method == "POST":
            return self._guarded(
                "installations", lambda: self._create_installation(read_json_body())
            )
        if method == "PATCH":
            return self._guarded(
                "installations", lambda: self._update_installation(read_json_body())
            )
        return json_response({"error": "Method not allowed"}, 405)

    @cherrypy.expose
    def mappings(self, repo_name=None):
        method = cherrypy.request.method
        if method == "POST":
            return self._guarded("mappings", lambda: self._store_mapping(read_json_body()))
        if method == "DELETE":
            return self._guarded("mappings", lambda: self._remove_mapping(repo_name))
        return json_response({"error": "Method not allowed"}, 405)

    # ------------------------------------------------------------------
    # Handlers: each returns (status, payload)
    # ------------------------------------------------------------------

    def _refresh_token(self):
        token = self.token_manager.refresh(force=True, strict=True)
        if not token:
            logger.error("[admin] Manual token refresh produced no token")
            return 500, {"error": "Failed to refresh token"}
        logger.success("[admin] Token refreshed manually")
        return 200, {
            "message": "Token refreshed successfully",
            "token_preview": token[:5] + "...",
        }

    def _update_cname(self, body: dict):
        domain = normalize_domain(body.get("domain"))
        if not domain or not is_valid_domain(domain):
            raise ValidationError("A valid 'domain' is required")
        target = normalize_domain(body.get("target")) or self.target_domain
        if not target or not is_valid_domain(target):
            raise ValidationError("A valid 'target' is required")

        dns = self.dns_registry.for_installation(body.get("installation_id"))
        result = dns.upsert(domain, target)
        logger.success(f"[admin] CNAME {domain} -> {target} updated manually")
        return 200, {
            "message": f"CNAME record updated for {domain}",
            "record_id": result.record_id,
            "degraded": result.degraded,
        }

    def _create_installation(self, body: dict):
        installation_id = _installation_id(body)
        for key in ("zone_id", "api_token"):
            if not body.get(key):
                raise ValidationError(f"'{key}' is required")
        utils.store_installation_config(
            installation_id, body["zone_id"], body["api_token"], body.get("email")
        )
        return 201, {
            "message": "Installation configuration stored",
            "installation_id": installation_id,
        }

    def _update_installation(self, body: dict):
        installation_id = _installation_id(body)
        updates = {k: v for k, v in body.items() if k != "installation_id"}
        result = utils.update_installation_config(installation_id, updates)
        if not result["changes"]:
            return 404, {"error": f"Installation {installation_id} not found"}
        return 200, {"message": "Installation configuration updated", **result}

    def _store_mapping(self, body: dict):
        repo_name = body.get("repo_name")
        if not repo_name:
            raise ValidationError("'repo_name' is required")
        mapping = utils.store_domain_mapping(
            repo_name, body.get("pages_url"), body.get("custom_domain")
        )
        return 200, {
            "repo_name": mapping.repo_name,
            "pages_url": mapping.pages_url,
            "custom_domain": mapping.custom_domain,
            "record_id": mapping.record_id,
        }

    def _remove_mapping(self, repo_name):
        if not repo_name:
            raise ValidationError("'repo_name' query parameter is required")
        if not utils.remove_domain_mapping(repo_name):
            return 404, {"error": f"No mapping for {repo_name}"}
        return 200, {"message": f"Mapping for {repo_name} removed"}

    def _guarded(self, label: str, handler):
        try:
            status, payload = handler()
        except ValueError as exc:
            logger.warning(f"[admin] {label}: rejected request: {exc}")
            return json_response({"error": str(exc)}, 400)
        except Exception as exc:
            logger.error(f"[admin] {label} failed: {exc}")
            return json_response({"error": GENERIC_ERROR}, 500)
        return json_response(payload, status)


def _installation_id(body: dict) -> int:
    try:
        return int(body.get("installation_id"))
    except (TypeError, ValueError):
        raise ValidationError("A numeric 'installation_id' is required")
