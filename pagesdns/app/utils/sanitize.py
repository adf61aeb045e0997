"""Input validation helpers used before anything is written to the store."""

import re
from typing import Optional
from urllib.parse import urlparse

from pagesdns.app.errors import ValidationError

MAX_LENGTH = 2048

REPO_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
DOMAIN_RE = re.compile(
    r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)


def sanitize_string(value) -> Optional[str]:
    """Trim whitespace and enforce the maximum field length."""
    if value is None:
        return None
    value = str(value).strip()
    if len(value) > MAX_LENGTH:
        raise ValidationError(
            f"Input exceeds maximum allowed length ({MAX_LENGTH} characters)"
        )
    return value


def is_valid_repo_name(repo_name) -> bool:
    if not repo_name or not isinstance(repo_name, str):
        return False
    return bool(REPO_NAME_RE.match(repo_name))


def is_valid_url(url) -> bool:
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_valid_domain(domain) -> bool:
    if not domain or not isinstance(domain, str) or len(domain) > 253:
        return False
    return bool(DOMAIN_RE.match(domain))


def normalize_domain(domain) -> Optional[str]:
    """Lower-case a domain and strip the trailing dot; blank becomes None."""
    if domain is None:
        return None
    domain = str(domain).strip().rstrip(".").lower()
    return domain or None
