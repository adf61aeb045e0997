"""Plain value objects passed between the stores, clients and the engine.

ORM rows never leave the store functions; callers receive these instead.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Optional, Union


@dataclass
class DomainMapping:
    repo_name: str
    pages_url: Optional[str] = None
    custom_domain: Optional[str] = None
    record_id: Optional[str] = None


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: datetime.datetime
    created_at: Optional[datetime.datetime] = None

    def is_usable(self, now: datetime.datetime, buffer: datetime.timedelta) -> bool:
        """Usable only while ``now + buffer < expires_at``."""
        return bool(self.value) and now + buffer < self.expires_at


@dataclass
class InstallationConfig:
    installation_id: int
    zone_id: str
    api_token: str  # decrypted
    email: Optional[str] = None


@dataclass(frozen=True)
class PagesInfo:
    url: Optional[str]
    domain: Optional[str]


@dataclass(frozen=True)
class RecordResult:
    """The provider confirmed a real record identifier."""

    record_id: str
    degraded = False


@dataclass(frozen=True)
class DegradedResult:
    """The provider call was tolerated but no usable identifier came back.

    ``placeholder_id`` is synthetic and must never be stored as a record id.
    """

    placeholder_id: str
    reason: str
    degraded = True

    @property
    def record_id(self) -> None:
        return None


CreateResult = Union[RecordResult, DegradedResult]
