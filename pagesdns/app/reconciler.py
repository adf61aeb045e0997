#!/usr/bin/env python3
"""Domain Reconciliation Engine.

Turns GitHub webhook events into at most two DNS calls per repository and
keeps the Domain State Store in step. Each event is one deterministic
transition computed from the persisted prior state and the newly
discovered domain; event arrival order is never consulted, so duplicated
or reordered deliveries converge on the same result.

Discovery chain, first non-empty answer wins and results are never merged:
- the domain carried by the event itself (authoritative when present)
- the live Pages API
- a ``CNAME`` file on main, master, gh-pages, then the default branch

Transitions (prior -> new):
- none -> D     create D
- D -> none     delete D
- D -> D        nothing, unless the stored record id is missing (repair)
- D -> D'       delete D, then create D'

A failing DNS call never blocks the state-store write; the database stays
the source of truth and the next event for the repository retries.
"""

import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import urlparse

from loguru import logger

from pagesdns.app import utils
from pagesdns.app.errors import CredentialError, UpstreamError, ValidationError
from pagesdns.app.utils.sanitize import is_valid_domain, normalize_domain

DEFAULT_BRANCHES = ("main", "master", "gh-pages")
CNAME_PATH = "CNAME"


class Action(str, Enum):
    NONE = "none"
    CREATE = "create"
    DELETE = "delete"
    REPLACE = "replace"
    REPAIR = "repair"


def plan_transition(
    prior_domain: Optional[str], new_domain: Optional[str], prior_record_id: Optional[str] = None
) -> Action:
    if not prior_domain and not new_domain:
        return Action.NONE
    if not prior_domain:
        return Action.CREATE
    if not new_domain:
        return Action.DELETE
    if prior_domain != new_domain:
        return Action.REPLACE
    return Action.NONE if prior_record_id else Action.REPAIR


@dataclass
class Discovery:
    domain: Optional[str]
    url: Optional[str] = None
    source: str = "none"


@dataclass
class Transition:
    repo: str
    action: Action
    prior_domain: Optional[str]
    new_domain: Optional[str]
    record_id: Optional[str] = None
    dns_ok: bool = True
    source: str = "none"


class KeyedLock:
    """One lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict = {}

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class DomainReconciler:
    def __init__(
        self,
        github,
        dns_registry,
        target_domain: Optional[str] = None,
        candidate_branches=DEFAULT_BRANCHES,
        per_repo_lock: bool = False,
    ):
        self.github = github
        self.dns_registry = dns_registry
        self.target_domain = target_domain or None
        if isinstance(candidate_branches, str):
            # env overrides arrive as "main, docs"
            candidate_branches = [b.strip() for b in candidate_branches.split(",")]
        branches = tuple(b for b in (candidate_branches or ()) if b)
        self.candidate_branches = branches or DEFAULT_BRANCHES
        self._repo_locks = KeyedLock() if per_repo_lock else None
        self._stats_lock = threading.Lock()
        self._stats = {
            "events": 0,
            "ignored": 0,
            "created": 0,
            "deleted": 0,
            "unchanged": 0,
            "dns_failures": 0,
        }
        self._handlers = {
            "repository": self.handle_repository_event,
            "page_build": self.handle_page_build_event,
            "pages": self.handle_pages_event,
        }

    # ------------------------------------------------------------------
    # Event entry points
    # ------------------------------------------------------------------

    def handle_event(self, kind: str, payload: dict) -> Optional[Transition]:
        """Dispatch one verified webhook. Unknown kinds are a no-op."""
        handler = self._handlers.get(kind)
        if handler is None:
            logger.info(f"[reconcile] Unhandled event: {kind}")
            self._count("ignored")
            return None
        self._count("events")
        return handler(payload)

    def handle_repository_event(self, payload: dict) -> Optional[Transition]:
        """Weakest signal: only acted on for repositories with a Pages site."""
        repo = _repo_name(payload)
        action = payload.get("action")
        if action == "deleted":
            self.remove_repository(repo, _installation_id(payload))
            return None
        if action not in ("created", "edited", "updated"):
            logger.debug(f"[reconcile] Ignoring repository/{action} for {repo}")
            return None

        info = self.github.get_pages_info(repo)
        if info is None:
            logger.info(f"[reconcile] {repo} has no Pages site, nothing to do")
            return None

        event_domain = ((payload.get("repository") or {}).get("pages") or {}).get(
            "custom_domain"
        )
        found = self.discover(repo, event_domain=event_domain, pages_info=info)
        return self.reconcile(
            repo,
            found.domain,
            found.url or _repo_html_url(payload),
            installation_id=_installation_id(payload),
            source=found.source,
        )

    def handle_pages_event(self, payload: dict) -> Optional[Transition]:
        """Authoritative when the payload carries a ``pages`` object."""
        repo = _repo_name(payload)
        action = payload.get("action")
        installation_id = _installation_id(payload)

        if action in ("deleted", "undeploy"):
            logger.info(f"[reconcile] Pages site {action} for {repo}")
            return self.reconcile(
                repo, None, None, installation_id=installation_id, source="event"
            )
        if action not in ("created", "updated"):
            logger.debug(f"[reconcile] Ignoring pages/{action} for {repo}")
            return None

        pages = payload.get("pages")
        if isinstance(pages, dict):
            found = Discovery(
                domain=pages.get("cname") or None, url=pages.get("html_url"), source="event"
            )
        else:
            found = self.discover(repo)
        return self.reconcile(
            repo,
            found.domain,
            found.url or _repo_html_url(payload),
            installation_id=installation_id,
            source=found.source,
        )

    def handle_page_build_event(self, payload: dict) -> Optional[Transition]:
        """Carries no domain, so always walks the discovery chain."""
        repo = _repo_name(payload)
        found = self.discover(repo)
        return self.reconcile(
            repo,
            found.domain,
            found.url or _repo_html_url(payload),
            installation_id=_installation_id(payload),
            source=found.source,
        )

    # ------------------------------------------------------------------
    # Discovery chain
    # ------------------------------------------------------------------

    def discover(self, repo: str, event_domain=None, pages_info=None) -> Discovery:
        """Walk the strategies in order and return the first domain found.

        ``pages_info`` lets a caller that already queried the Pages API
        skip the second lookup. Transient upstream failures propagate: an
        unknown domain must not be mistaken for an absent one.
        """
        url = pages_info.url if pages_info is not None else None
        strategies: List[Callable[[], Discovery]] = [
            lambda: Discovery(normalize_domain(event_domain), source="event"),
            lambda: self._from_pages_api(repo, pages_info),
            lambda: self._from_cname_file(repo),
        ]
        for strategy in strategies:
            found = strategy()
            url = url or found.url
            if found.domain:
                logger.info(
                    f"[reconcile] Custom domain for {repo} via {found.source}: {found.domain}"
                )
                return Discovery(found.domain, url, found.source)
        logger.info(f"[reconcile] No custom domain configured for {repo}")
        return Discovery(None, url, "none")

    def _from_pages_api(self, repo: str, pages_info=None) -> Discovery:
        info = pages_info if pages_info is not None else self.github.get_pages_info(repo)
        if info is None:
            return Discovery(None, source="pages_api")
        return Discovery(normalize_domain(info.domain), info.url, "pages_api")

    def _from_cname_file(self, repo: str) -> Discovery:
        tried = []
        for branch in self.candidate_branches:
            tried.append(branch)
            domain = self._read_cname(repo, branch)
            if domain:
                return Discovery(domain, source=f"cname_file:{branch}")

        default_branch = self.github.get_repo_default_branch(repo)
        if default_branch and default_branch not in tried:
            domain = self._read_cname(repo, default_branch)
            if domain:
                return Discovery(domain, source=f"cname_file:{default_branch}")
        logger.debug(f"[reconcile] No CNAME file in any branch of {repo}")
        return Discovery(None, source="cname_file")

    def _read_cname(self, repo: str, branch: str) -> Optional[str]:
        content = self.github.get_file_content(repo, CNAME_PATH, branch)
        if not content:
            return None
        # GitHub only honours the first line of the file
        first_line = content.strip().splitlines()[0] if content.strip() else ""
        return normalize_domain(first_line)

    # ------------------------------------------------------------------
    # Transition
    # ------------------------------------------------------------------

    def reconcile(
        self,
        repo: str,
        new_domain: Optional[str],
        new_url: Optional[str],
        installation_id=None,
        source: str = "none",
    ) -> Transition:
        """Diff persisted state against ``new_domain`` and apply the result."""
        new_domain = normalize_domain(new_domain)
        if new_domain and not is_valid_domain(new_domain):
            raise ValidationError(f"Discovered domain for {repo} is invalid: {new_domain!r}")

        with self._lock_for(repo):
            prior = utils.get_domain_mapping(repo)
            prior_domain = prior.custom_domain if prior else None
            prior_record_id = prior.record_id if prior else None
            pages_url = new_url or (prior.pages_url if prior else None)

            action = plan_transition(prior_domain, new_domain, prior_record_id)
            transition = Transition(
                repo, action, prior_domain, new_domain, prior_record_id, source=source
            )
            logger.info(
                f"[reconcile] {repo}: {prior_domain} -> {new_domain} "
                f"({action.value}, source: {source})"
            )

            if action is Action.NONE:
                self._count("unchanged")
                if prior is not None and pages_url != prior.pages_url:
                    utils.store_domain_mapping(repo, pages_url, prior_domain)
                return transition

            record_id = utils.KEEP
            dns = self._provider(repo, installation_id)
            if dns is None:
                transition.dns_ok = False

            if action in (Action.DELETE, Action.REPLACE):
                record_id = None
                transition.record_id = None
                if dns is not None and not self._delete(dns, repo, prior_domain, prior_record_id):
                    transition.dns_ok = False

            if action in (Action.CREATE, Action.REPLACE, Action.REPAIR):
                record_id = None
                created = self._create(dns, repo, new_domain, pages_url) if dns else None
                if created is None:
                    transition.dns_ok = False
                else:
                    record_id = created
                transition.record_id = record_id

            utils.store_domain_mapping(repo, pages_url, new_domain, record_id)
            return transition

    def remove_repository(self, repo: str, installation_id=None) -> bool:
        """Delete the repository's record (found by domain) and its mapping."""
        with self._lock_for(repo):
            prior = utils.get_domain_mapping(repo)
            if prior is not None and prior.custom_domain:
                logger.info(
                    f"[reconcile] Repository {repo} deleted, removing CNAME "
                    f"for {prior.custom_domain}"
                )
                dns = self._provider(repo, installation_id)
                if dns is not None:
                    self._delete(dns, repo, prior.custom_domain, prior.record_id)
            return utils.remove_domain_mapping(repo)

    def get_status(self) -> dict:
        with self._stats_lock:
            stats = dict(self._stats)
        stats["per_repo_lock"] = self._repo_locks is not None
        return stats

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _lock_for(self, repo: str):
        if self._repo_locks is None:
            return nullcontext()
        return self._repo_locks.hold(repo)

    def _count(self, key: str, n: int = 1):
        with self._stats_lock:
            self._stats[key] += n

    def _provider(self, repo: str, installation_id):
        try:
            return self.dns_registry.for_installation(installation_id)
        except (CredentialError, ValidationError) as exc:
            logger.error(
                f"[reconcile] DNS provider for installation {installation_id} "
                f"unusable, skipping DNS for {repo}: {exc}"
            )
            self._count("dns_failures")
            return None

    def _target_for(self, pages_url: Optional[str]) -> Optional[str]:
        if self.target_domain:
            return self.target_domain
        if pages_url:
            return urlparse(pages_url).hostname
        return None

    def _delete(self, dns, repo: str, domain: str, record_id: Optional[str]) -> bool:
        try:
            if dns.delete_by_name(domain, record_id):
                self._count("deleted")
            else:
                logger.info(f"[reconcile] No CNAME record to delete for {domain}")
            return True
        except UpstreamError as exc:
            logger.error(f"[reconcile] DNS delete for {domain} ({repo}) failed: {exc}")
            self._count("dns_failures")
            return False

    def _create(self, dns, repo: str, domain: str, pages_url: Optional[str]) -> Optional[str]:
        """Upsert the record; return its real id, or None when the call
        failed or only a placeholder came back."""
        target = self._target_for(pages_url)
        if not target:
            logger.error(
                f"[reconcile] No CNAME target for {domain} ({repo}): set "
                f"cloudflare.target_domain or provide a Pages URL"
            )
            self._count("dns_failures")
            return None
        try:
            result = dns.upsert(domain, target)
        except UpstreamError as exc:
            logger.error(f"[reconcile] DNS create for {domain} ({repo}) failed: {exc}")
            self._count("dns_failures")
            return None
        if result.degraded:
            logger.warning(
                f"[reconcile] {domain}: provider gave no record id ({result.reason}); "
                f"the next event for {repo} will look it up again"
            )
            return None
        self._count("created")
        return result.record_id


def _repo_name(payload: dict) -> str:
    repo = ((payload or {}).get("repository") or {}).get("full_name")
    if not repo:
        raise ValidationError("Event payload has no repository.full_name")
    return repo


def _repo_html_url(payload: dict) -> Optional[str]:
    return ((payload or {}).get("repository") or {}).get("html_url")


def _installation_id(payload: dict):
    return ((payload or {}).get("installation") or {}).get("id")
