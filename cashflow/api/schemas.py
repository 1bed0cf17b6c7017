from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from cashflow.domain.requests import (
    ActionOutcome,
    ApprovalLevel,
    CashAdvanceType,
    ExpenseItem,
    Requester,
    RequestStatus,
    RequestType,
)


class RequesterIn(BaseModel):
    requester_id: str = Field(min_length=1)
    requester_name: str = Field(min_length=1)
    requester_email: EmailStr

    def to_requester(self) -> Requester:
        return Requester(
            id=self.requester_id,
            name=self.requester_name,
            email=str(self.requester_email),
        )


class CashAdvanceCreate(RequesterIn):
    """Body for filing a cash advance."""

    advance_type: CashAdvanceType
    amount: Decimal = Field(gt=0, description="Requested amount, greater than 0")
    purpose: Optional[str] = None
    date_requested: date = Field(description="Date the cash is needed")


class ExpenseItemIn(BaseModel):
    from_destination: str = ""
    to_destination: str = ""
    jeep: Decimal = Field(default=Decimal("0"), ge=0)
    bus: Decimal = Field(default=Decimal("0"), ge=0)
    fx_van: Decimal = Field(default=Decimal("0"), ge=0)
    gas: Decimal = Field(default=Decimal("0"), ge=0)
    toll: Decimal = Field(default=Decimal("0"), ge=0)
    meals: Decimal = Field(default=Decimal("0"), ge=0)
    lodging: Decimal = Field(default=Decimal("0"), ge=0)
    others: Decimal = Field(default=Decimal("0"), ge=0)
    remarks: str = ""

    def to_item(self) -> ExpenseItem:
        return ExpenseItem(**self.model_dump())


class LiquidationCreate(RequesterIn):
    """Body for filing a liquidation against an approved support cash advance."""

    cash_advance_id: str = Field(min_length=1)
    store_id: str = Field(min_length=1, description="Store the expenses were incurred for")
    ticket_id: str = Field(min_length=1, description="Ticket or incident number")
    liquidation_date: date
    items: list[ExpenseItemIn] = Field(min_length=1)


class ActionIn(BaseModel):
    level: ApprovalLevel = Field(description="Approval level acting: 1 or 2")
    outcome: ActionOutcome
    actor_id: str = Field(min_length=1)
    actor_name: str = Field(min_length=1)
    comment: Optional[str] = None


class RequestFiltersIn(BaseModel):
    """
    Query filters for listing requests.

    All fields are optional.
    """

    status: Optional[RequestStatus] = Field(default=None, description="Filter by workflow status")
    request_type: Optional[RequestType] = Field(default=None, description="cash_advance or liquidation")
    requester_id: Optional[str] = Field(default=None, description="Filter by requester")

    # Pagination
    limit: int = Field(default=50, ge=1, le=100, description="Maximum number of records to return (1-100)")
    offset: int = Field(default=0, ge=0, description="Number of records to skip")


class ErrorOut(BaseModel):
    code: str
    message: str
    retryable: bool


class ErrorResponse(BaseModel):
    """Body of every workflow error response."""

    detail: ErrorOut
