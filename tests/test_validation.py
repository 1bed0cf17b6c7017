from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from cashflow.core.errors import InvariantViolation
from cashflow.domain.requests import (
    CashAdvanceType,
    ExpenseItem,
    Requester,
    RequestStatus,
    RequestType,
    check_invariants,
    ensure_valid,
    liquidation_amounts,
    new_liquidation,
)

from tests.fixtures.request_builders import (
    FIXED_NOW,
    REQUESTER,
    advance,
    jane,
    make_cash_advance,
    make_liquidation,
    mark,
)


def _approved_support_advance(amount: str = "3000"):
    pending = make_cash_advance(amount=amount, advance_type="support", purpose="Branch audit")
    return advance(pending, jane(1, "approve"), mark(2, "approve"))


def test_reconciled_liquidation_passes() -> None:
    # 3000 - 200 + 0 == 2800
    request = make_liquidation()

    assert check_invariants(request) is None
    assert ensure_valid(request) is request


def test_unreconciled_liquidation_is_rejected() -> None:
    request = make_liquidation(return_to_company="0")

    with pytest.raises(InvariantViolation) as exc_info:
        ensure_valid(request)

    assert "do not reconcile" in str(exc_info.value)
    assert exc_info.value.request_id == "liq_001"


def test_rounding_within_a_centavo_is_tolerated() -> None:
    within = make_liquidation(return_to_company="200.004")
    outside = make_liquidation(return_to_company="200.02")

    assert check_invariants(within) is None
    assert check_invariants(outside) is not None


def test_negative_liquidation_figure_is_rejected() -> None:
    request = make_liquidation(total_expenses="-100", cash_advance_amount="0", return_to_company="100")

    assert check_invariants(request) == "Liquidation total_expenses cannot be negative."


def test_cash_advance_amounts_are_parsed_as_decimal() -> None:
    request = make_cash_advance(amount=0.1)

    assert request.amounts.amount == Decimal("0.1")
    assert request.amounts.advance_type is CashAdvanceType.PERSONAL
    assert request.status == RequestStatus.PENDING_LEVEL1
    assert request.version == 1
    assert request.created_at == FIXED_NOW


@pytest.mark.parametrize("amount", ["0", "-250"])
def test_cash_advance_amount_must_be_positive(amount) -> None:
    with pytest.raises(InvariantViolation, match="greater than 0"):
        make_cash_advance(amount=amount)


def test_cash_advance_type_is_checked() -> None:
    with pytest.raises(InvariantViolation, match='Must be "personal" or "support"'):
        make_cash_advance(advance_type="travel")


def test_unparseable_amount_is_rejected() -> None:
    with pytest.raises(InvariantViolation, match="Invalid amount"):
        make_cash_advance(amount="five thousand")


def test_underspent_liquidation_returns_the_difference() -> None:
    items = [
        ExpenseItem(from_destination="Makati", to_destination="Pasig", jeep=Decimal("120"), meals=Decimal("680")),
        ExpenseItem(from_destination="Pasig", to_destination="Makati", gas=Decimal("2000")),
    ]

    amounts = liquidation_amounts(cash_advance_id="ca_1", cash_advance_amount=Decimal("3000"), items=items)

    assert amounts.total_expenses == Decimal("2800")
    assert amounts.return_to_company == Decimal("200")
    assert amounts.reimbursement == Decimal("0")
    assert amounts.items == tuple(items)


def test_overspent_liquidation_is_reimbursed() -> None:
    items = [ExpenseItem(lodging=Decimal("2500"), toll=Decimal("1000"))]

    amounts = liquidation_amounts(cash_advance_id="ca_1", cash_advance_amount=Decimal("3000"), items=items)

    assert amounts.total_expenses == Decimal("3500")
    assert amounts.return_to_company == Decimal("0")
    assert amounts.reimbursement == Decimal("500")


def test_new_liquidation_links_the_cash_advance() -> None:
    # Arrange
    cash_advance = _approved_support_advance()

    # Act
    request = new_liquidation(
        REQUESTER,
        cash_advance=cash_advance,
        items=[ExpenseItem(bus=Decimal("2800"))],
        created_at=FIXED_NOW,
    )

    # Assert
    assert request.request_type == RequestType.LIQUIDATION
    assert request.amounts.cash_advance_id == cash_advance.id
    assert request.amounts.cash_advance_amount == Decimal("3000")
    assert request.amounts.return_to_company == Decimal("200")
    assert request.status == RequestStatus.PENDING_LEVEL1


def test_new_liquidation_requires_items() -> None:
    with pytest.raises(InvariantViolation, match="At least one expense item"):
        new_liquidation(REQUESTER, cash_advance=_approved_support_advance(), items=[])


def test_new_liquidation_rejects_negative_expenses() -> None:
    with pytest.raises(InvariantViolation, match="'meals' cannot be negative"):
        new_liquidation(
            REQUESTER,
            cash_advance=_approved_support_advance(),
            items=[ExpenseItem(meals=Decimal("-1"))],
        )


@pytest.mark.parametrize(
    "cash_advance",
    [
        pytest.param(make_cash_advance(advance_type="support"), id="still-pending"),
        pytest.param(
            advance(make_cash_advance(advance_type="personal"), jane(1, "approve"), mark(2, "approve")),
            id="personal",
        ),
        pytest.param(make_liquidation(), id="not-a-cash-advance"),
    ],
)
def test_new_liquidation_needs_an_approved_support_advance(cash_advance) -> None:
    with pytest.raises(InvariantViolation, match="Must be an approved support cash advance"):
        new_liquidation(REQUESTER, cash_advance=cash_advance, items=[ExpenseItem(gas=Decimal("100"))])


def test_new_liquidation_rejects_someone_elses_advance() -> None:
    other = Requester(id="emp_002", name="Ben Reyes", email="ben.reyes@example.com")

    with pytest.raises(InvariantViolation):
        new_liquidation(other, cash_advance=_approved_support_advance(), items=[ExpenseItem(gas=Decimal("100"))])


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity", Decimal("NaN"), float("inf")])
def test_non_finite_cash_advance_amount_is_rejected(amount) -> None:
    with pytest.raises(InvariantViolation, match="Invalid amount"):
        make_cash_advance(amount=amount)


@pytest.mark.parametrize("figure", ["total_expenses", "return_to_company"])
def test_non_finite_liquidation_figure_is_an_invariant_violation(figure) -> None:
    request = make_liquidation(**{figure: "Infinity"})

    assert check_invariants(request) == f"Liquidation {figure} must be a finite number."


def test_non_finite_expense_item_is_rejected() -> None:
    with pytest.raises(InvariantViolation, match="Invalid amount"):
        new_liquidation(
            REQUESTER,
            cash_advance=_approved_support_advance(),
            items=[ExpenseItem(gas=Decimal("NaN"))],
        )


def test_filing_references_are_carried_on_the_request() -> None:
    # Arrange
    cash_advance = _approved_support_advance()

    # Act
    request = new_liquidation(
        REQUESTER,
        cash_advance=cash_advance,
        items=[ExpenseItem(bus=Decimal("2800"))],
        store_id="STR-0042",
        ticket_id="INC-1187",
        liquidation_date=date(2026, 10, 18),
        created_at=FIXED_NOW,
    )

    # Assert
    assert request.amounts.store_id == "STR-0042"
    assert request.amounts.ticket_id == "INC-1187"
    assert request.amounts.liquidation_date == date(2026, 10, 18)
