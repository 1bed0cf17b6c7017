"""Read-only projection of a committed request.

Handed to notifiers and returned by the API. Frozen, so nothing downstream
of a commit can mutate workflow state through it.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .entities import (
    ApprovalRequest,
    CashAdvanceAmounts,
    LevelDecision,
    LiquidationAmounts,
    RequestStatus,
    RequestType,
)


class LevelSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    approver_id: str
    approver_name: str
    decided_at: datetime
    comment: Optional[str] = None

    @classmethod
    def from_decision(cls, decision: LevelDecision | None) -> "LevelSnapshot | None":
        if decision is None:
            return None
        return cls(
            approver_id=decision.approver_id,
            approver_name=decision.approver_name,
            decided_at=decision.decided_at,
            comment=decision.comment,
        )


class RequestSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    request_type: RequestType
    status: RequestStatus
    requester_id: str
    requester_name: str
    requester_email: str
    created_at: datetime
    version: int

    # Cash advance
    amount: Optional[Decimal] = None
    advance_type: Optional[str] = None
    purpose: Optional[str] = None
    date_requested: Optional[date] = None

    # Liquidation
    cash_advance_id: Optional[str] = None
    cash_advance_amount: Optional[Decimal] = None
    total_expenses: Optional[Decimal] = None
    return_to_company: Optional[Decimal] = None
    reimbursement: Optional[Decimal] = None
    store_id: Optional[str] = None
    ticket_id: Optional[str] = None
    liquidation_date: Optional[date] = None

    level1: Optional[LevelSnapshot] = None
    level2: Optional[LevelSnapshot] = None
    rejected_at_level: Optional[int] = None

    @classmethod
    def from_request(cls, request: ApprovalRequest) -> "RequestSnapshot":
        figures: dict[str, object] = {}
        amounts = request.amounts
        if isinstance(amounts, CashAdvanceAmounts):
            figures = {
                "amount": amounts.amount,
                "advance_type": amounts.advance_type.value,
                "purpose": amounts.purpose,
                "date_requested": amounts.date_requested,
            }
        elif isinstance(amounts, LiquidationAmounts):
            figures = {
                "cash_advance_id": amounts.cash_advance_id,
                "cash_advance_amount": amounts.cash_advance_amount,
                "total_expenses": amounts.total_expenses,
                "return_to_company": amounts.return_to_company,
                "reimbursement": amounts.reimbursement,
                "store_id": amounts.store_id,
                "ticket_id": amounts.ticket_id,
                "liquidation_date": amounts.liquidation_date,
            }

        return cls(
            id=request.id,
            request_type=request.request_type,
            status=request.status,
            requester_id=request.requester_id,
            requester_name=request.requester_name,
            requester_email=request.requester_email,
            created_at=request.created_at,
            version=request.version,
            level1=LevelSnapshot.from_decision(request.level1),
            level2=LevelSnapshot.from_decision(request.level2),
            rejected_at_level=int(request.rejected_at_level) if request.rejected_at_level else None,
            **figures,
        )

    @property
    def headline_amount(self) -> Decimal:
        if self.request_type == RequestType.LIQUIDATION:
            return self.total_expenses or Decimal("0")
        return self.amount or Decimal("0")
