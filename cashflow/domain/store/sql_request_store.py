# ============================================================
# DB access layer
# ============================================================
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from cashflow.core.errors import InvariantViolation, RequestNotFound, StoreUnavailable
from cashflow.db.models import ApprovalRequestRow
from cashflow.domain.requests import (
    ApprovalLevel,
    ApprovalRequest,
    CashAdvanceAmounts,
    CashAdvanceType,
    ExpenseItem,
    LevelDecision,
    LiquidationAmounts,
    RequestStatus,
    RequestType,
)
from cashflow.domain.requests.entities import EXPENSE_CATEGORIES
from cashflow.domain.requests.validation import DUPLICATE_LIQUIDATION

from .request_store import RequestFilters

_table = ApprovalRequestRow.__table__


class SqlRequestStore:
    """Request store backed by SQLAlchemy.

    Each call opens its own session, so concurrent callers never share a
    transaction. The compare-and-swap is a single conditional UPDATE:

        UPDATE approval_requests SET ... , version = :new
        WHERE id = :id AND version = :expected

    and succeeds only when exactly one row matched.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def load(self, request_id: str) -> ApprovalRequest:
        """Load a request with its current version"""
        query = select(_table).where(_table.c.id == request_id)
        try:
            with self._session_factory() as db:
                row = db.execute(query).mappings().one_or_none()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(
                f"Could not load request {request_id}: {exc}", request_id=request_id
            ) from exc

        if row is None:
            raise RequestNotFound(f"Request {request_id} not found", request_id=request_id)
        return _row_to_request(row)

    def compare_and_swap(
            self,
            request_id: str,
            expected_version: int,
            new_record: ApprovalRequest,
    ) -> bool:
        """Write the mutable workflow columns if the version still matches"""
        if new_record.id != request_id or new_record.version != expected_version + 1:
            raise ValueError("new_record must be the next version of the same request")

        # Immutable columns (requester, amounts, created_at) are never rewritten
        query = (
            update(_table)
            .where(_table.c.id == request_id)
            .where(_table.c.version == expected_version)
            .values(
                status=new_record.status.value,
                rejected_at_level=_level_value(new_record.rejected_at_level),
                version=new_record.version,
                **_level_columns("level1", new_record.level1),
                **_level_columns("level2", new_record.level2),
            )
        )
        try:
            with self._session_factory() as db:
                matched = db.execute(query).rowcount
                db.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(
                f"Could not write request {request_id}: {exc}", request_id=request_id
            ) from exc

        return matched == 1

    def insert(self, record: ApprovalRequest) -> ApprovalRequest:
        """Store a newly filed request"""
        query = insert(_table).values(
            id=record.id,
            request_type=record.request_type.value,
            requester_id=record.requester_id,
            requester_name=record.requester_name,
            requester_email=record.requester_email,
            amounts=_amounts_to_json(record),
            cash_advance_id=_linked_cash_advance(record),
            status=record.status.value,
            rejected_at_level=_level_value(record.rejected_at_level),
            version=record.version,
            created_at=_to_utc(record.created_at),
            **_level_columns("level1", record.level1),
            **_level_columns("level2", record.level2),
        )
        try:
            with self._session_factory() as db:
                db.execute(query)
                db.commit()
        except IntegrityError as exc:
            cash_advance_id = _linked_cash_advance(record)
            existing = self.find_liquidation(cash_advance_id) if cash_advance_id else None
            if existing is not None and existing.id != record.id:
                raise InvariantViolation(DUPLICATE_LIQUIDATION, request_id=cash_advance_id) from exc
            raise ValueError(f"Request {record.id} already exists") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailable(
                f"Could not insert request {record.id}: {exc}", request_id=record.id
            ) from exc
        return record

    def find_liquidation(self, cash_advance_id: str) -> Optional[ApprovalRequest]:
        """Indexed lookup on the unique cash_advance_id column"""
        query = select(_table).where(_table.c.cash_advance_id == cash_advance_id)
        try:
            with self._session_factory() as db:
                row = db.execute(query).mappings().one_or_none()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(
                f"Could not look up liquidation for {cash_advance_id}: {exc}",
                request_id=cash_advance_id,
            ) from exc
        return _row_to_request(row) if row is not None else None

    def list_requests(self, filters: RequestFilters) -> list[ApprovalRequest]:
        """
        Retrieve requests matching the given filters, newest first.

        All filters are optional. Pagination is always applied.
        """
        query = select(_table)

        # --- Filters ---
        if filters.status:
            query = query.where(_table.c.status == RequestStatus(filters.status).value)

        if filters.request_type:
            query = query.where(_table.c.request_type == RequestType(filters.request_type).value)

        if filters.requester_id:
            query = query.where(_table.c.requester_id == filters.requester_id)

        query = (
            query.order_by(_table.c.created_at.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )

        try:
            with self._session_factory() as db:
                rows = db.execute(query).mappings().all()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Could not list requests: {exc}") from exc

        return [_row_to_request(row) for row in rows]


# ------------------------------
# Row mapping
# ------------------------------


def _to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _linked_cash_advance(record: ApprovalRequest) -> Optional[str]:
    if isinstance(record.amounts, LiquidationAmounts):
        return record.amounts.cash_advance_id
    return None


def _date_value(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _date_from(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _level_value(level: ApprovalLevel | None) -> int | None:
    return int(level) if level is not None else None


def _level_columns(prefix: str, decision: LevelDecision | None) -> dict[str, Any]:
    if decision is None:
        return {
            f"{prefix}_approver_id": None,
            f"{prefix}_approver_name": None,
            f"{prefix}_decided_at": None,
            f"{prefix}_comment": None,
        }
    return {
        f"{prefix}_approver_id": decision.approver_id,
        f"{prefix}_approver_name": decision.approver_name,
        f"{prefix}_decided_at": _to_utc(decision.decided_at),
        f"{prefix}_comment": decision.comment,
    }


def _level_from_row(prefix: str, row: Mapping[str, Any]) -> LevelDecision | None:
    if row[f"{prefix}_approver_id"] is None:
        return None
    return LevelDecision(
        approver_id=row[f"{prefix}_approver_id"],
        approver_name=row[f"{prefix}_approver_name"],
        decided_at=_to_utc(row[f"{prefix}_decided_at"]),
        comment=row[f"{prefix}_comment"],
    )


def _amounts_to_json(record: ApprovalRequest) -> dict[str, Any]:
    amounts = record.amounts
    if isinstance(amounts, CashAdvanceAmounts):
        return {
            "amount": str(amounts.amount),
            "advance_type": amounts.advance_type.value,
            "purpose": amounts.purpose,
            "date_requested": _date_value(amounts.date_requested),
        }
    return {
        "cash_advance_id": amounts.cash_advance_id,
        "cash_advance_amount": str(amounts.cash_advance_amount),
        "total_expenses": str(amounts.total_expenses),
        "return_to_company": str(amounts.return_to_company),
        "reimbursement": str(amounts.reimbursement),
        "store_id": amounts.store_id,
        "ticket_id": amounts.ticket_id,
        "liquidation_date": _date_value(amounts.liquidation_date),
        "items": [
            {
                "from_destination": item.from_destination,
                "to_destination": item.to_destination,
                "remarks": item.remarks,
                **{c: str(getattr(item, c)) for c in EXPENSE_CATEGORIES},
            }
            for item in amounts.items
        ],
    }


def _amounts_from_json(request_type: RequestType, data: Mapping[str, Any]):
    if request_type == RequestType.CASH_ADVANCE:
        return CashAdvanceAmounts(
            amount=Decimal(data["amount"]),
            advance_type=CashAdvanceType(data["advance_type"]),
            purpose=data.get("purpose"),
            date_requested=_date_from(data.get("date_requested")),
        )
    return LiquidationAmounts(
        cash_advance_id=data["cash_advance_id"],
        cash_advance_amount=Decimal(data["cash_advance_amount"]),
        total_expenses=Decimal(data["total_expenses"]),
        return_to_company=Decimal(data["return_to_company"]),
        reimbursement=Decimal(data["reimbursement"]),
        items=tuple(
            ExpenseItem(
                from_destination=item.get("from_destination", ""),
                to_destination=item.get("to_destination", ""),
                remarks=item.get("remarks", ""),
                **{c: Decimal(item.get(c, "0")) for c in EXPENSE_CATEGORIES},
            )
            for item in data.get("items", [])
        ),
        store_id=data.get("store_id"),
        ticket_id=data.get("ticket_id"),
        liquidation_date=_date_from(data.get("liquidation_date")),
    )


def _row_to_request(row: Mapping[str, Any]) -> ApprovalRequest:
    request_type = RequestType(row["request_type"])
    rejected_at_level = row["rejected_at_level"]
    return ApprovalRequest(
        id=row["id"],
        request_type=request_type,
        requester_id=row["requester_id"],
        requester_name=row["requester_name"],
        requester_email=row["requester_email"],
        amounts=_amounts_from_json(request_type, row["amounts"]),
        created_at=_to_utc(row["created_at"]),
        status=RequestStatus(row["status"]),
        level1=_level_from_row("level1", row),
        level2=_level_from_row("level2", row),
        rejected_at_level=ApprovalLevel(rejected_at_level) if rejected_at_level else None,
        version=row["version"],
    )
