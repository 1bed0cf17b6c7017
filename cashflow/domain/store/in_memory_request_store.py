import threading
from typing import Iterable, Optional

from cashflow.core.errors import InvariantViolation, RequestNotFound
from cashflow.domain.requests import ApprovalRequest, LiquidationAmounts
from cashflow.domain.requests.validation import DUPLICATE_LIQUIDATION

from .request_store import RequestFilters


def _linked_cash_advance(record: ApprovalRequest) -> Optional[str]:
    if isinstance(record.amounts, LiquidationAmounts):
        return record.amounts.cash_advance_id
    return None


class InMemoryRequestStore:
    """Process-local store. The lock makes each compare-and-swap atomic."""

    def __init__(self, records: Iterable[ApprovalRequest] = ()):
        self._records: dict[str, ApprovalRequest] = {}
        # cash advance id -> liquidation id
        self._liquidations: dict[str, str] = {}
        self._lock = threading.Lock()
        for record in records:
            self.insert(record)

    def load(self, request_id: str) -> ApprovalRequest:
        with self._lock:
            record = self._records.get(request_id)
        if record is None:
            raise RequestNotFound(f"Request {request_id} not found", request_id=request_id)
        return record

    def compare_and_swap(
            self,
            request_id: str,
            expected_version: int,
            new_record: ApprovalRequest,
    ) -> bool:
        if new_record.id != request_id or new_record.version != expected_version + 1:
            raise ValueError("new_record must be the next version of the same request")

        with self._lock:
            stored = self._records.get(request_id)
            if stored is None or stored.version != expected_version:
                return False
            self._records[request_id] = new_record
            return True

    def insert(self, record: ApprovalRequest) -> ApprovalRequest:
        cash_advance_id = _linked_cash_advance(record)
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Request {record.id} already exists")
            if cash_advance_id is not None:
                if cash_advance_id in self._liquidations:
                    raise InvariantViolation(DUPLICATE_LIQUIDATION, request_id=cash_advance_id)
                self._liquidations[cash_advance_id] = record.id
            self._records[record.id] = record
        return record

    def find_liquidation(self, cash_advance_id: str) -> Optional[ApprovalRequest]:
        with self._lock:
            liquidation_id = self._liquidations.get(cash_advance_id)
            return self._records.get(liquidation_id) if liquidation_id else None

    def list_requests(self, filters: RequestFilters) -> list[ApprovalRequest]:
        with self._lock:
            records = list(self._records.values())

        if filters.status:
            records = [r for r in records if r.status == filters.status]
        if filters.request_type:
            records = [r for r in records if r.request_type == filters.request_type]
        if filters.requester_id:
            records = [r for r in records if r.requester_id == filters.requester_id]

        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[filters.offset:filters.offset + filters.limit]
