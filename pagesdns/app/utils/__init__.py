"""Credential Store and Domain State Store.

Every write runs inside ``transaction()`` so a failure leaves no
half-applied row. Reads return plain value objects from
``pagesdns.app.types``.
"""

import datetime
from typing import Optional

from loguru import logger
from sqlalchemy import delete, func, select

from pagesdns.app.db import connect, transaction, utcnow
from pagesdns.app.db.models import CloudflareRecord, Installation, PagesUrl, Token
from pagesdns.app.errors import ValidationError
from pagesdns.app.types import AccessToken, DomainMapping, InstallationConfig
from pagesdns.app.utils.crypto import decrypt, encrypt
from pagesdns.app.utils.sanitize import (
    is_valid_domain,
    is_valid_repo_name,
    is_valid_url,
    normalize_domain,
    sanitize_string,
)

TOKEN_ID = "github_app_token"
DEFAULT_REFRESH_BUFFER = datetime.timedelta(minutes=5)

# Marker for "leave the stored record id as it is"
KEEP = object()


def _require_repo_name(repo_name) -> str:
    repo_name = sanitize_string(repo_name)
    if not is_valid_repo_name(repo_name):
        raise ValidationError(f"Invalid repository name format: {repo_name!r}")
    return repo_name


# ---------------------------------------------------------------------------
# Domain State Store
# ---------------------------------------------------------------------------


def get_domain_mapping(repo_name) -> Optional[DomainMapping]:
    """Return the stored mapping for ``repo_name`` or None."""
    repo_name = _require_repo_name(repo_name)
    session = connect()
    try:
        row = session.get(PagesUrl, repo_name)
        record = session.execute(
            select(CloudflareRecord).filter_by(repo_name=repo_name)
        ).scalar_one_or_none()
        if row is None:
            logger.debug(f"[db] No mapping stored for {repo_name}")
            return None
        return DomainMapping(
            repo_name=row.repo_name,
            pages_url=row.pages_url,
            custom_domain=row.custom_domain,
            record_id=record.cname_record if record else None,
        )
    finally:
        session.close()


def store_domain_mapping(repo_name, pages_url, custom_domain, record_id=KEEP) -> DomainMapping:
    """Insert or update the mapping for ``repo_name``.

    ``record_id`` may be a string (store it), None (clear it) or ``KEEP``.
    Mapping and record id are written in one transaction.
    """
    repo_name = _require_repo_name(repo_name)
    pages_url = sanitize_string(pages_url) or None
    custom_domain = normalize_domain(sanitize_string(custom_domain))

    if pages_url and not is_valid_url(pages_url):
        raise ValidationError(f"Invalid pages URL format: {pages_url!r}")
    if custom_domain and not is_valid_domain(custom_domain):
        raise ValidationError(f"Invalid custom domain format: {custom_domain!r}")

    session = connect()
    with transaction(session, f"store mapping for {repo_name}"):
        row = session.get(PagesUrl, repo_name)
        if row is None:
            row = PagesUrl(repo_name=repo_name)
            session.add(row)
            logger.debug(f"[db] Inserting mapping for {repo_name}")
        row.pages_url = pages_url
        row.custom_domain = custom_domain

        record = session.execute(
            select(CloudflareRecord).filter_by(repo_name=repo_name)
        ).scalar_one_or_none()
        if record_id is KEEP:
            stored_id = record.cname_record if record else None
        elif record_id is None:
            if record is not None:
                session.delete(record)
            stored_id = None
        else:
            stored_id = sanitize_string(record_id)
            if record is None:
                session.add(CloudflareRecord(repo_name=repo_name, cname_record=stored_id))
            else:
                record.cname_record = stored_id

    logger.info(
        f"[db] Stored mapping {repo_name}: domain={custom_domain} "
        f"url={pages_url} record={stored_id}"
    )
    return DomainMapping(repo_name, pages_url, custom_domain, stored_id)


def remove_domain_mapping(repo_name) -> bool:
    """Delete the mapping and its record id. Returns False if none existed."""
    repo_name = _require_repo_name(repo_name)
    session = connect()
    with transaction(session, f"remove mapping for {repo_name}"):
        removed = session.execute(
            delete(PagesUrl).where(PagesUrl.repo_name == repo_name)
        ).rowcount
        session.execute(
            delete(CloudflareRecord).where(CloudflareRecord.repo_name == repo_name)
        )
    if removed:
        logger.info(f"[db] Removed mapping for {repo_name}")
    else:
        logger.debug(f"[db] No mapping to remove for {repo_name}")
    return bool(removed)


def count_domain_mappings() -> int:
    session = connect()
    try:
        return session.execute(select(func.count(PagesUrl.repo_name))).scalar() or 0
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Credential Store: installation access token
# ---------------------------------------------------------------------------


def store_token(value: str, expires_at: datetime.datetime) -> AccessToken:
    if not value or not expires_at:
        raise ValidationError("Token data missing required fields")
    now = utcnow()
    session = connect()
    with transaction(session, "store token"):
        row = session.get(Token, TOKEN_ID)
        if row is None:
            row = Token(id=TOKEN_ID)
            session.add(row)
        row.token = value
        row.expires_at = expires_at
        row.created_at = now
    logger.info(f"[db] Stored installation token, expires {expires_at.isoformat()}")
    return AccessToken(value=value, expires_at=expires_at, created_at=now)


def get_stored_token() -> Optional[AccessToken]:
    session = connect()
    try:
        row = session.get(Token, TOKEN_ID)
        if row is None or not row.token:
            logger.debug("[db] No token found in database")
            return None
        return AccessToken(
            value=row.token, expires_at=row.expires_at, created_at=row.created_at
        )
    finally:
        session.close()


def is_token_expired(buffer=DEFAULT_REFRESH_BUFFER, now=None) -> bool:
    """True when no token is stored or ``now + buffer >= expires_at``.

    A read failure counts as expired so callers fall through to a refresh.
    """
    try:
        token = get_stored_token()
    except Exception as exc:
        logger.error(f"[db] Could not read stored token: {exc}")
        return True
    if token is None:
        return True
    return not token.is_usable(now or utcnow(), buffer)


# ---------------------------------------------------------------------------
# Credential Store: per-installation Cloudflare overrides
# ---------------------------------------------------------------------------


def store_installation_config(installation_id, zone_id, api_token, email=None):
    """Create (or replace) the tenant override. The API token is encrypted."""
    if not installation_id or not zone_id or not api_token:
        raise ValidationError("installation_id, zone_id and api_token are required")
    encrypted = encrypt(api_token)
    session = connect()
    with transaction(session, f"store installation {installation_id}"):
        row = session.get(Installation, int(installation_id))
        if row is None:
            row = Installation(installation_id=int(installation_id))
            session.add(row)
        row.cloudflare_zone_id = sanitize_string(zone_id)
        row.cloudflare_api_token = encrypted
        row.cloudflare_email = sanitize_string(email) or None
        row.updated_at = utcnow()
    logger.info(f"[db] Stored installation config for {installation_id}")
    return {"installation_id": int(installation_id)}


def get_installation_config(installation_id) -> Optional[InstallationConfig]:
    """Return the decrypted tenant override, or None when not configured.

    Raises CredentialError if the stored token cannot be decrypted.
    """
    session = connect()
    try:
        row = session.get(Installation, int(installation_id))
        if row is None:
            return None
        zone_id = row.cloudflare_zone_id
        encrypted = row.cloudflare_api_token
        email = row.cloudflare_email
    finally:
        session.close()
    return InstallationConfig(
        installation_id=int(installation_id),
        zone_id=zone_id,
        api_token=decrypt(encrypted) if encrypted else "",
        email=email,
    )


def update_installation_config(installation_id, updates: dict) -> dict:
    """Apply a partial patch of ``zone_id``, ``api_token`` and ``email``."""
    fields = {}
    if updates.get("zone_id"):
        fields["cloudflare_zone_id"] = sanitize_string(updates["zone_id"])
    if updates.get("api_token"):
        fields["cloudflare_api_token"] = encrypt(updates["api_token"])
    if "email" in updates:
        fields["cloudflare_email"] = sanitize_string(updates["email"]) or None
    if not fields:
        raise ValidationError("No fields to update")

    session = connect()
    with transaction(session, f"update installation {installation_id}"):
        row = session.get(Installation, int(installation_id))
        if row is None:
            changes = 0
        else:
            for name, value in fields.items():
                setattr(row, name, value)
            row.updated_at = utcnow()
            changes = 1
    logger.info(
        f"[db] Updated installation {installation_id}: "
        f"{sorted(k.replace('cloudflare_', '') for k in fields)} ({changes} row)"
    )
    return {"installation_id": int(installation_id), "changes": changes}
