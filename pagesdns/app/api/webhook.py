"""Inbound GitHub webhook endpoint."""

import hashlib
import hmac
import json
from typing import Optional, Tuple

import cherrypy
from loguru import logger

from pagesdns.app.api import json_response
from pagesdns.app.errors import PagesDNSError

SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(secret: str, body: bytes, header: Optional[str]) -> bool:
    """Constant-time check of an ``X-Hub-Signature-256`` header."""
    if not header:
        return False
    return hmac.compare_digest(compute_signature(secret, body), header.strip())


class WebhookAPI:
    """POST /webhook

    Application failures are logged and still acknowledged with 200 so the
    sender does not keep redelivering. Only an unverifiable request (401)
    or an unreadable body (400) is rejected.
    """

    def __init__(self, reconciler, secret: str = "", require_signature: bool = True):
        self.reconciler = reconciler
        self.secret = secret or ""
        self.require_signature = require_signature
        if not self.secret:
            if require_signature:
                logger.error(
                    "[webhook] No webhook secret configured; every delivery will be rejected"
                )
            else:
                logger.warning(
                    "[webhook] No webhook secret configured; signatures are not checked"
                )

    @cherrypy.expose
    def index(self):
        if cherrypy.request.method != "POST":
            return json_response({"error": "Method not allowed"}, 405)

        headers = cherrypy.request.headers
        body = cherrypy.request.body.read() if cherrypy.request.body else b""
        status, payload = self.process(
            event=headers.get("X-GitHub-Event", ""),
            body=body,
            signature=headers.get("X-Hub-Signature-256"),
            delivery=headers.get("X-GitHub-Delivery", "-"),
        )
        return json_response(payload, status)

    def process(
        self, event: str, body: bytes, signature: Optional[str], delivery: str = "-"
    ) -> Tuple[int, dict]:
        if self.secret:
            if not verify_signature(self.secret, body, signature):
                logger.warning(f"[webhook] Invalid signature on delivery {delivery}")
                return 401, {"error": "Invalid signature"}
        elif self.require_signature:
            logger.warning(f"[webhook] Rejecting delivery {delivery}: no secret configured")
            return 401, {"error": "Invalid signature"}

        try:
            payload = json.loads(body.decode("utf-8") or "null")
        except (UnicodeDecodeError, ValueError):
            logger.warning(f"[webhook] Delivery {delivery} has an unreadable body")
            return 400, {"error": "Invalid JSON payload"}
        if not isinstance(payload, dict):
            return 400, {"error": "Invalid JSON payload"}

        if event == "ping":
            logger.info(f"[webhook] ping received (delivery {delivery})")
            return 200, {"message": "pong"}

        logger.info(
            f"[webhook] {event}/{payload.get('action', '-')} for "
            f"{(payload.get('repository') or {}).get('full_name', '-')} "
            f"(delivery {delivery})"
        )
        try:
            transition = self.reconciler.handle_event(event, payload)
        except PagesDNSError as exc:
            logger.error(f"[webhook] Failed to process delivery {delivery}: {exc}")
            return 200, {"message": "Webhook received"}
        except Exception as exc:
            logger.exception(f"[webhook] Unexpected error on delivery {delivery}: {exc}")
            return 200, {"message": "Webhook received"}

        if transition is None:
            return 200, {"message": "Webhook received"}
        return 200, {
            "message": "Webhook processed",
            "action": transition.action.value,
            "domain": transition.new_domain,
        }
