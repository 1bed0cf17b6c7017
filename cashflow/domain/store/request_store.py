from dataclasses import dataclass
from typing import Optional, Protocol

from cashflow.domain.requests import ApprovalRequest, RequestStatus, RequestType


@dataclass(frozen=True)
class RequestFilters:
    status: Optional[RequestStatus] = None
    request_type: Optional[RequestType] = None
    requester_id: Optional[str] = None
    limit: int = 50
    offset: int = 0


class RequestStore(Protocol):
    def load(self, request_id: str) -> ApprovalRequest:
        """Load a request with its current version.

        Raises RequestNotFound for unknown ids and StoreUnavailable when the
        backend cannot be reached.
        """
        ...

    def compare_and_swap(
            self,
            request_id: str,
            expected_version: int,
            new_record: ApprovalRequest,
    ) -> bool:
        """Persist `new_record` only if the stored version equals `expected_version`.

        Returns False on a version mismatch instead of raising.
        """
        ...

    def insert(self, record: ApprovalRequest) -> ApprovalRequest:
        """Store a newly filed request"""
        ...

    def find_liquidation(self, cash_advance_id: str) -> Optional[ApprovalRequest]:
        """The liquidation filed against `cash_advance_id`, or None.

        At most one can exist; `insert` refuses a second one with
        InvariantViolation.
        """
        ...

    def list_requests(self, filters: RequestFilters) -> list[ApprovalRequest]:
        """Display listing, newest first. No version guard."""
        ...
