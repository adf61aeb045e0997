"""Cloudflare implementation of the CNAME record contract.

All calls are scoped to one zone. Provider error shapes never reach the
engine as anything other than the taxonomy in ``pagesdns.app.errors``:
duplicates become a DegradedResult, stale ids on update/delete are success.
"""

from __future__ import annotations

import time
from typing import Optional

import requests
import requests.exceptions
from loguru import logger

from pagesdns.app.errors import (
    UpstreamPermanentError,
    UpstreamTransientError,
    ValidationError,
    classify_status,
)
from pagesdns.app.types import CreateResult, DegradedResult, RecordResult
from pagesdns.app.utils.retry import with_retry
from .base import DNSRecordReconciler

API_URL = "https://api.cloudflare.com/client/v4"

# "record already exists" / "identical record exists" / CNAME conflicts
DUPLICATE_CODES = {81053, 81057, 81058}
# "record does not exist"
NOT_FOUND_CODES = {81044}


def _error_codes(data: dict) -> set:
    return {e.get("code") for e in (data or {}).get("errors") or [] if isinstance(e, dict)}


def _error_text(data: dict) -> str:
    errors = (data or {}).get("errors") or []
    return ", ".join(str(e.get("message", e)) for e in errors) or "Unknown error"


class CloudflareDNS(DNSRecordReconciler):
    def __init__(
        self,
        zone_id: str,
        api_token: Optional[str] = None,
        email: Optional[str] = None,
        global_api_key: Optional[str] = None,
        api_url: str = API_URL,
        ttl: int = 1,
        proxied: bool = False,
        timeout: float = 30,
        retries: int = 3,
        retry_delay: float = 0.5,
        retry_max_delay: float = 8.0,
    ):
        if not zone_id:
            raise ValidationError("Cloudflare zone_id is required")
        self.zone_id = zone_id
        self.api_token = api_token
        self.email = email
        self.global_api_key = global_api_key
        self.api_url = api_url.rstrip("/")
        self.ttl = ttl
        self.proxied = proxied
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.retry_max_delay = retry_max_delay

    @classmethod
    def get_name(cls) -> str:
        return "cloudflare"

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    def find_by_name(self, domain: str) -> Optional[str]:
        data = self._request(
            "GET", "/dns_records", params={"type": "CNAME", "name": domain}
        )
        records = data.get("result") or []
        if not records:
            logger.debug(f"[cloudflare] No CNAME record found for {domain}")
            return None
        record_id = records[0]["id"]
        logger.debug(f"[cloudflare] Found CNAME record for {domain}: {record_id}")
        return record_id

    def create(self, domain: str, target: str) -> CreateResult:
        logger.info(f"[cloudflare] Creating CNAME {domain} -> {target}")
        try:
            data = self._request("POST", "/dns_records", json=self._body(domain, target))
        except UpstreamPermanentError as exc:
            if exc.codes & DUPLICATE_CODES:
                logger.warning(
                    f"[cloudflare] CNAME for {domain} already exists, treating as created"
                )
                return DegradedResult(
                    placeholder_id=f"placeholder-{int(time.time() * 1000)}",
                    reason="record already exists",
                )
            raise
        record_id = data["result"]["id"]
        logger.success(f"[cloudflare] Created CNAME {domain} ({record_id})")
        return RecordResult(record_id)

    def update(self, record_id: str, domain: str, target: str) -> bool:
        logger.info(f"[cloudflare] Updating CNAME {record_id}: {domain} -> {target}")
        try:
            self._request(
                "PUT", f"/dns_records/{record_id}", json=self._body(domain, target)
            )
        except UpstreamPermanentError as exc:
            if exc.not_found or exc.codes & NOT_FOUND_CODES:
                logger.warning(
                    f"[cloudflare] Record {record_id} no longer exists, nothing to update"
                )
                return True
            raise
        return True

    def delete(self, record_id: str) -> bool:
        logger.info(f"[cloudflare] Deleting DNS record {record_id}")
        try:
            self._request("DELETE", f"/dns_records/{record_id}")
        except UpstreamPermanentError as exc:
            if exc.not_found or exc.codes & NOT_FOUND_CODES:
                logger.debug(f"[cloudflare] Record {record_id} already deleted")
                return True
            raise
        logger.success(f"[cloudflare] Deleted DNS record {record_id}")
        return True

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _body(self, domain: str, target: str) -> dict:
        return {
            "type": "CNAME",
            "name": domain,
            "content": target,
            "ttl": self.ttl,
            "proxied": self.proxied,
        }

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        elif self.email and self.global_api_key:
            headers["X-Auth-Email"] = self.email
            headers["X-Auth-Key"] = self.global_api_key
        return headers

    def _request_once(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.api_url}/zones/{self.zone_id}{path}"
        try:
            response = requests.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
            raise UpstreamTransientError(f"{method} {path} failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.ok or not data.get("success", False):
            status = response.status_code if not response.ok else 400
            error = classify_status(
                status, f"{method} {path} failed: HTTP {response.status_code} {_error_text(data)}"
            )
            error.codes = _error_codes(data)
            raise error
        return data

    def _request(self, method: str, path: str, **kwargs) -> dict:
        return with_retry(
            lambda: self._request_once(method, path, **kwargs),
            max_retries=self.retries,
            initial_delay=self.retry_delay,
            max_delay=self.retry_max_delay,
            label=f"cloudflare {method} {path}",
        )
