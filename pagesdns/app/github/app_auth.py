"""GitHub App authentication: signed assertion and installation token exchange."""

from __future__ import annotations

import datetime
import time
from pathlib import Path
from typing import Optional

import jwt
import requests
import requests.exceptions
from loguru import logger

from pagesdns.app.errors import CredentialError, UpstreamTransientError, classify_status
from pagesdns.app.types import AccessToken

ASSERTION_LIFETIME = 10 * 60
# GitHub rejects assertions issued in the future; back-date for clock drift
CLOCK_DRIFT = 60


def normalize_private_key(key: str) -> str:
    """Turn literal ``\\n`` sequences (common in env vars) into newlines."""
    if key and "\\n" in key and "\n" not in key:
        key = key.replace("\\n", "\n")
    return key.strip() + "\n" if key else key


def parse_github_timestamp(value: str) -> datetime.datetime:
    """Parse ``2016-07-11T22:14:10Z`` into a naive UTC datetime."""
    parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return parsed


class GitHubAppAuth:
    """Builds the RS256 app assertion and exchanges it for an
    installation-scoped access token.

    Only one network call lives here (``exchange``); retry and caching are
    the token manager's business.
    """

    def __init__(
        self,
        app_id: str,
        installation_id: str,
        private_key: Optional[str] = None,
        private_key_path: Optional[str] = None,
        api_url: str = "https://api.github.com",
        timeout: float = 30,
    ) -> None:
        self.app_id = str(app_id or "")
        self.installation_id = str(installation_id or "")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._private_key = normalize_private_key(private_key) if private_key else None
        self._private_key_path = private_key_path

        if not self.app_id or not self.installation_id:
            logger.warning("[github] app_id or installation_id not configured")

    def _load_private_key(self) -> str:
        if self._private_key:
            return self._private_key
        if self._private_key_path:
            path = Path(self._private_key_path)
            if not path.exists():
                raise CredentialError(f"GitHub App private key not found at {path}")
            self._private_key = normalize_private_key(path.read_text())
            return self._private_key
        raise CredentialError("GitHub App private key is not configured")

    def build_assertion(self, now: Optional[int] = None) -> str:
        """Sign the short-lived app assertion (10 minutes, issuer = app id)."""
        now = int(now if now is not None else time.time())
        payload = {
            "iat": now - CLOCK_DRIFT,
            "exp": now + ASSERTION_LIFETIME,
            "iss": self.app_id,
        }
        try:
            return jwt.encode(payload, self._load_private_key(), algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise CredentialError(f"Could not sign GitHub App assertion: {exc}") from exc

    def exchange(self) -> AccessToken:
        """POST the assertion to the installation token endpoint."""
        if not self.app_id or not self.installation_id:
            raise CredentialError("GitHub App id and installation id are required")
        assertion = self.build_assertion()
        url = f"{self.api_url}/app/installations/{self.installation_id}/access_tokens"
        try:
            response = requests.post(
                url,
                headers={
                    "Authorization": f"Bearer {assertion}",
                    "Accept": "application/vnd.github+json",
                },
                timeout=self.timeout,
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
            raise UpstreamTransientError(f"Token exchange failed: {exc}") from exc

        if not response.ok:
            raise classify_status(
                response.status_code,
                f"Failed to fetch installation access token: HTTP "
                f"{response.status_code} {response.text[:200]}",
            )

        data = response.json()
        token = AccessToken(
            value=data["token"], expires_at=parse_github_timestamp(data["expires_at"])
        )
        logger.info(
            f"[github] Installation access token issued, expires {token.expires_at.isoformat()}"
        )
        return token
