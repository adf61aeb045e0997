#!/usr/bin/env python3
"""Token Lifecycle Manager for the GitHub App installation token.

States: absent, cached-valid, cached-expiring (inside the refresh buffer)
and refreshing. ``acquire()`` answers from memory while the cached token is
valid, adopts a still-valid token from the database after a restart, and
otherwise refreshes.

Refreshes are single-flight: the first caller creates a shared Future and
performs the exchange; every concurrent caller waits on that same Future.
The Future is cleared once the refresh settles, so the next expiry starts a
new cycle. The background checker goes through the same path, so a
request-driven refresh and a scheduled one still collapse into one call.

``acquire()`` never raises. When the exchange keeps failing it falls back to
the last stored token, then to the statically configured token (which may
be empty). A failed exchange starts a cooldown during which ``acquire()``
serves that fallback without another exchange, so one webhook making several
upstream calls spends at most one retry budget. ``refresh(strict=True)``
raises instead of handing back a fallback value.
"""

import datetime
import threading
from concurrent.futures import Future
from typing import Callable, Optional

from loguru import logger

from pagesdns.app import utils
from pagesdns.app.db import utcnow
from pagesdns.app.errors import CredentialError, is_transient
from pagesdns.app.types import AccessToken
from pagesdns.app.utils.retry import with_retry

DEFAULT_BUFFER = datetime.timedelta(minutes=5)
DEFAULT_CHECK_INTERVAL = 45 * 60


class TokenManager:
    def __init__(
        self,
        issuer,
        fallback_token: str = "",
        refresh_buffer: datetime.timedelta = DEFAULT_BUFFER,
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL,
        max_retries: int = 5,
        initial_delay: float = 1.0,
        max_delay: float = 15.0,
        clock: Callable[[], datetime.datetime] = utcnow,
        failure_cooldown: Optional[datetime.timedelta] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.issuer = issuer
        self.fallback_token = fallback_token or ""
        self.refresh_buffer = refresh_buffer
        self.check_interval_seconds = check_interval_seconds
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self._clock = clock
        self._sleep = sleep
        if failure_cooldown is None:
            failure_cooldown = datetime.timedelta(
                seconds=initial_delay * 2 ** max_retries
            )
        self.failure_cooldown = failure_cooldown

        self._cache: Optional[AccessToken] = None
        self._lock = threading.Lock()
        self._inflight: Optional[Future] = None
        self._failed_until: Optional[datetime.datetime] = None

        self._stop_event = threading.Event()
        self._thread = None
        self._last_check: dict = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def acquire(self) -> str:
        """Return a usable token value (possibly stale or empty on failure)."""
        cached = self._cache
        if cached is not None and cached.is_usable(self._clock(), self.refresh_buffer):
            return cached.value

        stored = self._load_stored()
        if stored is not None and stored.is_usable(self._clock(), self.refresh_buffer):
            logger.info("[token] Adopting still-valid token from database")
            self._cache = stored
            return stored.value

        failed_until = self._failed_until
        if failed_until is not None and self._clock() < failed_until:
            logger.debug("[token] Recent exchange failed, serving fallback token")
            return self._degraded_value()

        return self.refresh(force=False)

    def refresh(self, force: bool = True, strict: bool = False) -> str:
        """Exchange a new token, joining any refresh already in flight.

        With ``force=False`` the leader re-checks the cache first, so a caller
        that arrives just after another refresh finished reuses its result.
        With ``strict=True`` a failed exchange raises CredentialError instead
        of returning the fallback value.
        """
        with self._lock:
            future = self._inflight
            leader = future is None
            if leader:
                future = Future()
                self._inflight = future

        if leader:
            try:
                future.set_result(self._refresh_once(force))
            except BaseException as exc:
                future.set_exception(exc)
                raise
            finally:
                with self._lock:
                    self._inflight = None
        else:
            logger.debug("[token] Waiting on in-flight refresh")

        value, fresh = future.result()
        if strict and not fresh:
            raise CredentialError("GitHub installation token refresh failed")
        return value

    def is_expired(self) -> bool:
        """True if no token is stored or it is inside the refresh buffer."""
        return utils.is_token_expired(buffer=self.refresh_buffer, now=self._clock())

    def check_and_refresh(self) -> bool:
        """Refresh when the stored token is expired or expiring. Returns True
        if a refresh was performed."""
        try:
            expired = self.is_expired()
        except Exception as exc:
            logger.error(f"[token] Error checking token expiration: {exc}")
            return False
        if not expired:
            logger.debug("[token] Token still valid, no refresh needed")
            return False
        logger.info("[token] Token is expired or will expire soon, refreshing")
        self.refresh(force=True)
        return True

    def invalidate(self):
        """Drop the in-memory token; the next acquire re-reads or refreshes."""
        self._cache = None

    def get_status(self) -> dict:
        cached = self._cache
        return {
            "cached": cached is not None,
            "valid": bool(
                cached and cached.is_usable(self._clock(), self.refresh_buffer)
            ),
            "expires_at": cached.expires_at.isoformat() if cached else None,
            "refreshing": self._inflight is not None,
            "cooldown_until": (
                self._failed_until.isoformat() if self._failed_until else None
            ),
            "checker_alive": self.is_alive,
            "last_check": dict(self._last_check),
        }

    # ------------------------------------------------------------------
    # Background proactive check
    # ------------------------------------------------------------------

    def start(self):
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="token_refresh_worker"
        )
        self._thread.start()
        logger.info(
            f"[token] Refresh checker started, interval: "
            f"{int(self.check_interval_seconds // 60)}m"
        )

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=10)
        logger.info("[token] Refresh checker stopped")

    @property
    def is_alive(self):
        return self._thread is not None and self._thread.is_alive()

    def _run(self):
        self._tick()
        while not self._stop_event.wait(timeout=self.check_interval_seconds):
            self._tick()

    def _tick(self):
        started_at = utcnow()
        refreshed = self.check_and_refresh()
        self._last_check = {
            "at": started_at.isoformat(),
            "refreshed": refreshed,
        }
        if refreshed:
            logger.info("[token] Token refreshed successfully")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _load_stored(self) -> Optional[AccessToken]:
        try:
            return utils.get_stored_token()
        except Exception as exc:
            logger.error(f"[token] Error retrieving token from database: {exc}")
            return None

    def _refresh_once(self, force: bool):
        """Return ``(value, fresh)``; ``fresh`` is False for a fallback value."""
        if not force:
            cached = self._cache
            if cached is not None and cached.is_usable(
                self._clock(), self.refresh_buffer
            ):
                logger.debug("[token] Refreshed by a concurrent caller, using cache")
                return cached.value, True

        logger.info("[token] Generating new GitHub App installation token")
        try:
            retry_kwargs = {"sleep": self._sleep} if self._sleep else {}
            token = with_retry(
                self.issuer.exchange,
                max_retries=self.max_retries,
                initial_delay=self.initial_delay,
                max_delay=self.max_delay,
                should_retry=is_transient,
                label="token exchange",
                **retry_kwargs,
            )
        except Exception as exc:
            self._failed_until = self._clock() + self.failure_cooldown
            logger.error(
                f"[token] Error generating token: {exc}; no new exchange before "
                f"{self._failed_until.isoformat()}"
            )
            return self._degraded_value(), False

        try:
            token = utils.store_token(token.value, token.expires_at)
        except Exception as exc:
            # memory stays authoritative; the next refresh rewrites the row
            logger.error(f"[token] Could not persist refreshed token: {exc}")
        self._cache = token
        self._failed_until = None
        return token.value, True

    def _degraded_value(self) -> str:
        stored = self._load_stored()
        if stored is not None and stored.value:
            logger.warning("[token] Falling back to last stored token")
            return stored.value
        if self.fallback_token:
            logger.warning("[token] Falling back to configured static token")
        else:
            logger.error("[token] No token available; upstream calls will be anonymous")
        return self.fallback_token
