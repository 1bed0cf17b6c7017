"""Creation-time validation and the invariants every stored request must hold.

`check_invariants` is shared by request creation and by the state machine, so
a record whose figures stop reconciling can never be transitioned.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from cashflow.core.errors import InvariantViolation

from .entities import (
    EXPENSE_CATEGORIES,
    ApprovalLevel,
    ApprovalRequest,
    CashAdvanceAmounts,
    CashAdvanceType,
    ExpenseItem,
    LiquidationAmounts,
    Requester,
    RequestStatus,
    RequestType,
)

DEFAULT_TOLERANCE = Decimal("0.01")
DUPLICATE_LIQUIDATION = "A liquidation already exists for this cash advance."
_ZERO = Decimal("0")


def new_request_id() -> str:
    return uuid.uuid4().hex


def to_decimal(value: Any) -> Decimal:
    """Parse a monetary figure; floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        parsed = value
    else:
        try:
            parsed = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise InvariantViolation(f"Invalid amount: {value!r}") from exc
    if not parsed.is_finite():
        raise InvariantViolation(f"Invalid amount: {value!r}")
    return parsed


def liquidation_reconciles(
    amounts: LiquidationAmounts,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> bool:
    """total_expenses == cash_advance_amount - return_to_company + reimbursement"""
    expected = amounts.cash_advance_amount - amounts.return_to_company + amounts.reimbursement
    return abs(expected - amounts.total_expenses) <= tolerance


def check_invariants(
    request: ApprovalRequest,
    *,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> str | None:
    """Return a description of the first broken invariant, or None."""
    problem = _check_amounts(request, tolerance)
    if problem:
        return problem
    return _check_audit_trail(request)


def ensure_valid(
    request: ApprovalRequest,
    *,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> ApprovalRequest:
    problem = check_invariants(request, tolerance=tolerance)
    if problem:
        raise InvariantViolation(problem, request_id=request.id)
    return request


def _check_amounts(request: ApprovalRequest, tolerance: Decimal) -> str | None:
    amounts = request.amounts

    if request.request_type == RequestType.CASH_ADVANCE:
        if not isinstance(amounts, CashAdvanceAmounts):
            return "Cash advance request carries liquidation figures."
        if not amounts.amount.is_finite():
            return "Cash advance amount must be a finite number."
        if amounts.amount <= _ZERO:
            return "Cash advance amount must be greater than 0."
        return None

    if not isinstance(amounts, LiquidationAmounts):
        return "Liquidation request carries cash advance figures."

    figures = {
        "cash_advance_amount": amounts.cash_advance_amount,
        "total_expenses": amounts.total_expenses,
        "return_to_company": amounts.return_to_company,
        "reimbursement": amounts.reimbursement,
    }
    for name, value in figures.items():
        if not value.is_finite():
            return f"Liquidation {name} must be a finite number."
        if value < _ZERO:
            return f"Liquidation {name} cannot be negative."

    if not liquidation_reconciles(amounts, tolerance):
        return (
            "Liquidation figures do not reconcile: "
            f"{amounts.cash_advance_amount} - {amounts.return_to_company} + {amounts.reimbursement} "
            f"!= {amounts.total_expenses}"
        )
    return None


def _check_audit_trail(request: ApprovalRequest) -> str | None:
    status = request.status

    if (request.level1 is not None) != (status != RequestStatus.PENDING_LEVEL1):
        return f"Level 1 audit entry inconsistent with status '{status.value}'."

    level2_expected = status == RequestStatus.APPROVED or (
        status == RequestStatus.REJECTED and request.rejected_at_level == ApprovalLevel.LEVEL2
    )
    if (request.level2 is not None) != level2_expected:
        return f"Level 2 audit entry inconsistent with status '{status.value}'."

    if (request.rejected_at_level is not None) != (status == RequestStatus.REJECTED):
        return f"Rejection level inconsistent with status '{status.value}'."

    if request.version < 1:
        return "Version must start at 1."
    return None


# ------------------------------
# Factories used by the filing flow
# ------------------------------


def new_cash_advance(
    requester: Requester,
    *,
    advance_type: CashAdvanceType | str,
    amount: Any,
    purpose: str | None = None,
    date_requested: date | None = None,
    created_at: datetime | None = None,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> ApprovalRequest:
    try:
        kind = CashAdvanceType(advance_type)
    except ValueError as exc:
        raise InvariantViolation(
            'Invalid cash advance type. Must be "personal" or "support".'
        ) from exc

    record = ApprovalRequest(
        id=new_request_id(),
        request_type=RequestType.CASH_ADVANCE,
        requester_id=requester.id,
        requester_name=requester.name,
        requester_email=requester.email,
        amounts=CashAdvanceAmounts(
            amount=to_decimal(amount),
            advance_type=kind,
            purpose=purpose or None,
            date_requested=date_requested,
        ),
        created_at=created_at or datetime.now(timezone.utc),
    )
    return ensure_valid(record, tolerance=tolerance)


def liquidation_amounts(
    *,
    cash_advance_id: str,
    cash_advance_amount: Decimal,
    items: Iterable[ExpenseItem],
) -> LiquidationAmounts:
    """Derive the settlement figures from the expense sheet.

    Unspent advance goes back to the company; overspend is reimbursed.
    """
    items = tuple(items)
    total = sum((item.total for item in items), _ZERO)
    return LiquidationAmounts(
        cash_advance_id=cash_advance_id,
        cash_advance_amount=cash_advance_amount,
        total_expenses=total,
        return_to_company=max(cash_advance_amount - total, _ZERO),
        reimbursement=max(total - cash_advance_amount, _ZERO),
        items=items,
    )


def new_liquidation(
    requester: Requester,
    *,
    cash_advance: ApprovalRequest,
    items: Iterable[ExpenseItem],
    store_id: str | None = None,
    ticket_id: str | None = None,
    liquidation_date: date | None = None,
    created_at: datetime | None = None,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> ApprovalRequest:
    """Build a liquidation against an approved support cash advance."""
    items = tuple(items)
    if not items:
        raise InvariantViolation("At least one expense item is required.")

    for item in items:
        for category in EXPENSE_CATEGORIES:
            value = to_decimal(getattr(item, category))
            if value < _ZERO:
                raise InvariantViolation(f"Expense '{category}' cannot be negative.")

    advance = cash_advance.amounts
    if (
        cash_advance.request_type != RequestType.CASH_ADVANCE
        or not isinstance(advance, CashAdvanceAmounts)
        or cash_advance.status != RequestStatus.APPROVED
        or advance.advance_type != CashAdvanceType.SUPPORT
        or cash_advance.requester_id != requester.id
    ):
        raise InvariantViolation(
            "Invalid cash advance. Must be an approved support cash advance.",
            request_id=cash_advance.id,
        )

    record = ApprovalRequest(
        id=new_request_id(),
        request_type=RequestType.LIQUIDATION,
        requester_id=requester.id,
        requester_name=requester.name,
        requester_email=requester.email,
        amounts=replace(
            liquidation_amounts(
                cash_advance_id=cash_advance.id,
                cash_advance_amount=advance.amount,
                items=items,
            ),
            store_id=store_id or None,
            ticket_id=ticket_id or None,
            liquidation_date=liquidation_date,
        ),
        created_at=created_at or datetime.now(timezone.utc),
    )
    return ensure_valid(record, tolerance=tolerance)
