from abc import ABC, abstractmethod
from typing import Optional

from pagesdns.app.types import CreateResult, RecordResult


class DNSRecordReconciler(ABC):
    """Idempotent operations on one named CNAME record.

    Every operation must be safe to call with a stale or already-deleted
    record id; "not found" on update or delete counts as success.
    """

    @classmethod
    @abstractmethod
    def get_name(cls) -> str:
        """Return the provider name"""
        pass

    @abstractmethod
    def find_by_name(self, domain: str) -> Optional[str]:
        pass

    @abstractmethod
    def create(self, domain: str, target: str) -> CreateResult:
        """Create the record. "Already exists" returns a DegradedResult."""
        pass

    @abstractmethod
    def update(self, record_id: str, domain: str, target: str) -> bool:
        pass

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        pass

    def upsert(self, domain: str, target: str) -> CreateResult:
        """Update the record named ``domain`` if one exists, else create it."""
        existing = self.find_by_name(domain)
        if existing:
            self.update(existing, domain, target)
            return RecordResult(existing)
        return self.create(domain, target)

    def delete_by_name(self, domain: str, record_id: Optional[str] = None) -> bool:
        """Delete the record named ``domain``; fall back to ``record_id`` when
        the name lookup finds nothing. Returns False if nothing was there."""
        found = self.find_by_name(domain) or record_id
        if not found:
            return False
        self.delete(found)
        return True
