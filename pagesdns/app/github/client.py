"""GitHub REST client for the three lookups the reconciliation engine needs.

A 404 is a meaningful answer here ("no Pages site", "no such file") and is
returned as ``None``. Transient failures are retried and then raised.
"""

from __future__ import annotations

import base64
from typing import Callable, Optional

import requests
import requests.exceptions
from loguru import logger

from pagesdns.app.errors import (
    UpstreamPermanentError,
    UpstreamTransientError,
    classify_status,
)
from pagesdns.app.types import PagesInfo
from pagesdns.app.utils.retry import with_retry


class GitHubClient:
    """Usage::

        client = GitHubClient(token_manager.acquire)
        info = client.get_pages_info("org/site")     # PagesInfo or None
        cname = client.get_file_content("org/site", "CNAME", "main")
    """

    def __init__(
        self,
        token_provider: Callable[[], Optional[str]],
        api_url: str = "https://api.github.com",
        timeout: float = 30,
        retries: int = 3,
        retry_delay: float = 0.5,
        retry_max_delay: float = 8.0,
    ) -> None:
        self.token_provider = token_provider
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.retry_max_delay = retry_max_delay

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_pages_info(self, repo: str) -> Optional[PagesInfo]:
        data = self._get_json(f"/repos/{repo}/pages")
        if data is None:
            logger.debug(f"[github] No Pages site for {repo}")
            return None
        info = PagesInfo(url=data.get("html_url"), domain=data.get("cname") or None)
        logger.debug(f"[github] Pages for {repo}: url={info.url} cname={info.domain}")
        return info

    def get_file_content(self, repo: str, path: str, branch: str) -> Optional[str]:
        data = self._get_json(f"/repos/{repo}/contents/{path}", params={"ref": branch})
        if data is None or not isinstance(data, dict):
            return None
        content = data.get("content") or ""
        if data.get("encoding", "base64") == "base64":
            try:
                content = base64.b64decode(content).decode("utf-8")
            except ValueError as exc:
                # binascii.Error and UnicodeDecodeError; unreadable means no value
                logger.warning(f"[github] Undecodable {path} in {repo}@{branch}: {exc}")
                return None
        return content

    def get_repo_default_branch(self, repo: str) -> Optional[str]:
        data = self._get_json(f"/repos/{repo}")
        if data is None:
            logger.debug(f"[github] Repository not found: {repo}")
            return None
        return data.get("default_branch")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _headers(self) -> dict:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("[github] No installation token available, calling anonymously")
        return headers

    def _get_once(self, path: str, params: Optional[dict]):
        try:
            response = requests.get(
                f"{self.api_url}{path}",
                headers=self._headers(),
                params=params,
                timeout=self.timeout,
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
            raise UpstreamTransientError(f"GET {path} failed: {exc}") from exc
        if not response.ok:
            raise classify_status(
                response.status_code, f"GET {path} returned HTTP {response.status_code}"
            )
        return response.json()

    def _get_json(self, path: str, params: Optional[dict] = None):
        """GET ``path``; None on 404, raise on any other failure."""
        try:
            return with_retry(
                lambda: self._get_once(path, params),
                max_retries=self.retries,
                initial_delay=self.retry_delay,
                max_delay=self.retry_max_delay,
                label=f"GET {path}",
            )
        except UpstreamPermanentError as exc:
            if exc.not_found:
                return None
            logger.error(f"[github] {exc}")
            raise
