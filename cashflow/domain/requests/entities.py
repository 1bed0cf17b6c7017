# ============================================================
# Business/domain entities
# ============================================================
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Optional, Union


class RequestType(str, Enum):
    CASH_ADVANCE = "cash_advance"
    LIQUIDATION = "liquidation"


class RequestStatus(str, Enum):
    PENDING_LEVEL1 = "pending_level1"
    LEVEL1_APPROVED = "level1_approved"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.APPROVED, RequestStatus.REJECTED)


class ApprovalLevel(IntEnum):
    LEVEL1 = 1
    LEVEL2 = 2


class ActionOutcome(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class CashAdvanceType(str, Enum):
    PERSONAL = "personal"
    SUPPORT = "support"


class NotificationKind(str, Enum):
    LEVEL1_APPROVAL_NEEDED = "level1_approval_needed"
    LEVEL2_APPROVAL_NEEDED = "level2_approval_needed"
    REQUESTER_APPROVED = "requester_approved"
    REQUESTER_REJECTED = "requester_rejected"


class DecisionError(str, Enum):
    INVALID_TRANSITION = "invalid_transition"
    INVARIANT_VIOLATION = "invariant_violation"


@dataclass(frozen=True)
class Requester:
    id: str
    name: str
    email: str


@dataclass(frozen=True)
class LevelDecision:
    """Audit entry written once per level."""
    approver_id: str
    approver_name: str
    decided_at: datetime
    comment: Optional[str] = None


@dataclass(frozen=True)
class CashAdvanceAmounts:
    amount: Decimal
    advance_type: CashAdvanceType
    purpose: Optional[str] = None
    date_requested: Optional[date] = None


# Per-trip expense columns of a liquidation sheet
EXPENSE_CATEGORIES = ("jeep", "bus", "fx_van", "gas", "toll", "meals", "lodging", "others")


@dataclass(frozen=True)
class ExpenseItem:
    from_destination: str = ""
    to_destination: str = ""
    jeep: Decimal = Decimal("0")
    bus: Decimal = Decimal("0")
    fx_van: Decimal = Decimal("0")
    gas: Decimal = Decimal("0")
    toll: Decimal = Decimal("0")
    meals: Decimal = Decimal("0")
    lodging: Decimal = Decimal("0")
    others: Decimal = Decimal("0")
    remarks: str = ""

    @property
    def total(self) -> Decimal:
        return sum((getattr(self, c) for c in EXPENSE_CATEGORIES), Decimal("0"))


@dataclass(frozen=True)
class LiquidationAmounts:
    cash_advance_id: str
    cash_advance_amount: Decimal
    total_expenses: Decimal
    return_to_company: Decimal
    reimbursement: Decimal
    items: tuple[ExpenseItem, ...] = ()
    # Filing references, never changed after creation
    store_id: Optional[str] = None
    ticket_id: Optional[str] = None
    liquidation_date: Optional[date] = None


RequestAmounts = Union[CashAdvanceAmounts, LiquidationAmounts]


@dataclass(frozen=True)
class ApprovalRequest:
    id: str
    request_type: RequestType
    requester_id: str
    requester_name: str
    requester_email: str
    amounts: RequestAmounts
    created_at: datetime
    status: RequestStatus = RequestStatus.PENDING_LEVEL1
    level1: Optional[LevelDecision] = None
    level2: Optional[LevelDecision] = None
    rejected_at_level: Optional[ApprovalLevel] = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def headline_amount(self) -> Decimal:
        """The single figure approvers see first."""
        if isinstance(self.amounts, LiquidationAmounts):
            return self.amounts.total_expenses
        return self.amounts.amount


@dataclass(frozen=True)
class Action:
    level: ApprovalLevel
    outcome: ActionOutcome
    actor_id: str
    actor_name: str
    comment: Optional[str] = None

    def __post_init__(self) -> None:
        # Accept raw 1/2 and "approve"/"reject" from callers
        object.__setattr__(self, "level", ApprovalLevel(self.level))
        object.__setattr__(self, "outcome", ActionOutcome(self.outcome))


@dataclass(frozen=True)
class NotificationIntent:
    """A notification the state machine wants sent once the write commits.

    Approver groups are addressed by permission key, the requester directly.
    """
    kind: NotificationKind
    permission_key: Optional[str] = None
    recipients: tuple[str, ...] = ()

    @property
    def audience(self) -> str:
        return self.permission_key or "requester"


@dataclass(frozen=True)
class AuditPatch:
    status: RequestStatus
    level1: Optional[LevelDecision] = None
    level2: Optional[LevelDecision] = None
    rejected_at_level: Optional[ApprovalLevel] = None


@dataclass(frozen=True)
class Decision:
    patch: AuditPatch
    notifications: tuple[NotificationIntent, ...] = ()

    @property
    def next_status(self) -> RequestStatus:
        return self.patch.status


@dataclass(frozen=True)
class RejectedAction:
    error: DecisionError
    reason: str


DecisionResult = Union[Decision, RejectedAction]
