from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from decimal import Decimal

import pytest

from cashflow.core.errors import (
    ConcurrentModification,
    DeliveryError,
    InvalidTransition,
    InvariantViolation,
    PermissionDenied,
    RequestNotFound,
    StoreUnavailable,
)
from cashflow.domain.requests import (
    Action,
    ApprovalLevel,
    ExpenseItem,
    NotificationKind,
    RequestStatus,
)
from cashflow.domain.store import InMemoryRequestStore, RequestFilters

from tests.fixtures.orchestrator import build_orchestrator
from tests.fixtures.recording_notifier import BlockingNotifier, RecordingNotifier
from tests.fixtures.request_builders import (
    APPROVERS,
    FIXED_NOW,
    REQUESTER,
    advance,
    jane,
    make_cash_advance,
    make_liquidation,
    mark,
)
from tests.fixtures.stores import StaleReadStore, UnavailableStore


def _events(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


@pytest.mark.asyncio
async def test_two_level_approval_of_a_personal_cash_advance() -> None:
    # Arrange
    store = InMemoryRequestStore()
    notifier = RecordingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier)

    # Act: file, then Jane approves level 1, then Mark approves level 2
    filed = await orch.file_cash_advance(REQUESTER, advance_type="personal", amount=Decimal("5000"))
    after_l1 = await orch.submit_action(filed.id, jane(1, "approve"))
    after_l2 = await orch.submit_action(filed.id, mark(2, "approve"))

    # Assert
    assert after_l1.status == RequestStatus.LEVEL1_APPROVED
    assert after_l2.status == RequestStatus.APPROVED
    assert after_l2.level1.approver_name == "Jane"
    assert after_l2.level2.approver_name == "Mark"
    assert store.load(filed.id).version == 3

    assert notifier.kinds == [
        NotificationKind.LEVEL1_APPROVAL_NEEDED,
        NotificationKind.LEVEL2_APPROVAL_NEEDED,
        NotificationKind.REQUESTER_APPROVED,
    ]
    recipients = [sent[0] for sent in notifier.sent]
    assert recipients[0] == APPROVERS["approve_cash_advance_level1"]
    assert recipients[1] == APPROVERS["approve_cash_advance_level2"]
    assert recipients[2] == ["ana.cruz@example.com"]


@pytest.mark.asyncio
async def test_level1_rejection_is_final() -> None:
    # Arrange
    request = make_cash_advance()
    store = InMemoryRequestStore([request])
    notifier = RecordingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier)

    # Act
    rejected = await orch.submit_action(request.id, jane(1, "reject", "insufficient budget"))

    # Assert
    assert rejected.status == RequestStatus.REJECTED
    assert rejected.rejected_at_level == ApprovalLevel.LEVEL1
    assert rejected.level2 is None

    (recipients, kind, payload) = notifier.sent[0]
    assert kind == NotificationKind.REQUESTER_REJECTED
    assert recipients == ["ana.cruz@example.com"]
    assert payload.rejected_at_level == 1
    assert payload.level1.comment == "insufficient budget"

    # A later level 2 action is refused and changes nothing
    with pytest.raises(InvalidTransition, match="already fully processed"):
        await orch.submit_action(request.id, mark(2, "approve"))
    assert store.load(request.id) == rejected
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_duplicate_level1_approval_fails_and_sends_nothing_new() -> None:
    request = make_cash_advance()
    store = InMemoryRequestStore([request])
    notifier = RecordingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier)

    await orch.submit_action(request.id, jane(1, "approve"))
    with pytest.raises(InvalidTransition) as exc_info:
        await orch.submit_action(request.id, jane(1, "approve"))

    assert exc_info.value.retryable is False
    assert store.load(request.id).version == 2
    assert notifier.kinds == [NotificationKind.LEVEL2_APPROVAL_NEEDED]


@pytest.mark.asyncio
async def test_delivery_failure_does_not_undo_the_commit(capsys) -> None:
    # Arrange: the email service refuses the level 2 alert
    request = make_cash_advance()
    store = InMemoryRequestStore([request])
    notifier = RecordingNotifier(
        failures={NotificationKind.LEVEL2_APPROVAL_NEEDED: [DeliveryError("HTTP 400", transient=False)]}
    )
    orch = build_orchestrator(store=store, notifier=notifier)

    # Act
    updated = await orch.submit_action(request.id, jane(1, "approve"))

    # Assert
    assert updated.status == RequestStatus.LEVEL1_APPROVED
    assert store.load(request.id).status == RequestStatus.LEVEL1_APPROVED
    assert notifier.sent == []

    failed = [e for e in _events(capsys.readouterr().out) if e["event"] == "notification.failed"]
    assert len(failed) == 1
    assert failed[0]["level"] == "error"
    assert failed[0]["kind"] == "level2_approval_needed"


@pytest.mark.asyncio
async def test_notifier_bug_is_contained() -> None:
    request = make_cash_advance()
    store = InMemoryRequestStore([request])
    notifier = RecordingNotifier(
        failures={NotificationKind.LEVEL2_APPROVAL_NEEDED: [RuntimeError("template blew up")]}
    )
    orch = build_orchestrator(store=store, notifier=notifier)

    updated = await orch.submit_action(request.id, jane(1, "approve"))

    assert updated.status == RequestStatus.LEVEL1_APPROVED


@pytest.mark.asyncio
async def test_empty_approver_group_is_skipped_with_a_warning(capsys) -> None:
    # Arrange: nobody holds the level 2 permission
    request = make_cash_advance()
    store = InMemoryRequestStore([request])
    notifier = RecordingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier, approvers={})

    # Act
    updated = await orch.submit_action(request.id, jane(1, "approve"))

    # Assert
    assert updated.status == RequestStatus.LEVEL1_APPROVED
    assert notifier.calls == 0

    skipped = [e for e in _events(capsys.readouterr().out) if e["event"] == "notification.skipped"]
    assert len(skipped) == 1
    assert skipped[0]["level"] == "warning"
    assert skipped[0]["audience"] == "approve_cash_advance_level2"


@pytest.mark.asyncio
async def test_transient_delivery_errors_are_retried() -> None:
    request = make_cash_advance()
    store = InMemoryRequestStore([request])
    notifier = RecordingNotifier(
        failures={
            NotificationKind.LEVEL2_APPROVAL_NEEDED: [
                DeliveryError("HTTP 503"),
                DeliveryError("timeout"),
            ]
        }
    )
    orch = build_orchestrator(store=store, notifier=notifier, max_attempts=3)

    await orch.submit_action(request.id, jane(1, "approve"))

    assert notifier.calls == 3
    assert notifier.kinds == [NotificationKind.LEVEL2_APPROVAL_NEEDED]


@pytest.mark.asyncio
async def test_stale_read_loses_the_compare_and_swap() -> None:
    # Arrange: someone else already approved level 1; we still see version 1
    original = make_cash_advance()
    current = advance(original, jane(1, "approve"))
    store = StaleReadStore(InMemoryRequestStore([current]), stale=original)
    notifier = RecordingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier)

    # Act
    with pytest.raises(ConcurrentModification) as exc_info:
        await orch.submit_action(original.id, mark(1, "reject", "too late"))

    # Assert
    assert exc_info.value.retryable is True
    assert "Reload it and try again" in str(exc_info.value)
    assert store.inner.load(original.id) == current
    assert notifier.calls == 0


@pytest.mark.asyncio
async def test_unknown_request_is_not_found() -> None:
    orch = build_orchestrator(store=InMemoryRequestStore(), notifier=RecordingNotifier())

    with pytest.raises(RequestNotFound):
        await orch.submit_action("missing", jane(1, "approve"))


@pytest.mark.asyncio
async def test_unreadable_store_is_reported_as_retryable(capsys) -> None:
    request = make_cash_advance()
    store = UnavailableStore(InMemoryRequestStore([request]), fail_load=True)
    orch = build_orchestrator(store=store, notifier=RecordingNotifier())

    with pytest.raises(StoreUnavailable) as exc_info:
        await orch.submit_action(request.id, jane(1, "approve"))

    assert exc_info.value.retryable is True
    spans = [e["span"] for e in _events(capsys.readouterr().out) if e["event"] == "span.end"]
    assert spans[0]["name"] == "request.load"
    assert spans[0]["status"] == "error"


@pytest.mark.asyncio
async def test_failed_write_sends_no_notification() -> None:
    request = make_cash_advance()
    store = UnavailableStore(InMemoryRequestStore([request]), fail_write=True)
    notifier = RecordingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier)

    with pytest.raises(StoreUnavailable):
        await orch.submit_action(request.id, jane(1, "approve"))

    assert notifier.calls == 0
    assert store.inner.load(request.id).status == RequestStatus.PENDING_LEVEL1


@pytest.mark.asyncio
async def test_broken_liquidation_is_never_stored() -> None:
    store = InMemoryRequestStore()
    notifier = RecordingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier)

    with pytest.raises(InvariantViolation):
        await orch.create_request(make_liquidation(return_to_company="0"))

    assert store.list_requests(RequestFilters()) == []
    assert notifier.calls == 0


@pytest.mark.asyncio
async def test_create_request_refuses_already_decided_records() -> None:
    orch = build_orchestrator(store=InMemoryRequestStore(), notifier=RecordingNotifier())
    decided = advance(make_cash_advance(), jane(1, "approve"))

    with pytest.raises(InvariantViolation, match="pending Level 1 at version 1"):
        await orch.create_request(decided)


@pytest.mark.asyncio
async def test_liquidation_is_filed_once_per_support_advance() -> None:
    # Arrange: an approved support cash advance of 3000
    store = InMemoryRequestStore()
    notifier = RecordingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier)
    cash_advance = await orch.file_cash_advance(REQUESTER, advance_type="support", amount="3000")
    await orch.submit_action(cash_advance.id, jane(1, "approve"))
    await orch.submit_action(cash_advance.id, mark(2, "approve"))
    items = [ExpenseItem(from_destination="Cebu", to_destination="Mandaue", gas=Decimal("2800"))]

    # Act
    liquidation = await orch.file_liquidation(REQUESTER, cash_advance_id=cash_advance.id, items=items)

    # Assert
    assert liquidation.amounts.return_to_company == Decimal("200")
    assert notifier.sent[-1][0] == APPROVERS["approve_liquidations_level1"]
    assert notifier.sent[-1][1] == NotificationKind.LEVEL1_APPROVAL_NEEDED

    with pytest.raises(InvariantViolation, match="already exists"):
        await orch.file_liquidation(REQUESTER, cash_advance_id=cash_advance.id, items=items)


@pytest.mark.asyncio
async def test_cancelled_delivery_keeps_the_commit() -> None:
    # Arrange
    request = make_cash_advance()
    store = InMemoryRequestStore([request])
    notifier = BlockingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier)

    # Act: cancel while the notifier is mid-send
    task = asyncio.create_task(orch.submit_action(request.id, jane(1, "approve")))
    await asyncio.wait_for(notifier.entered.wait(), timeout=5)
    task.cancel()

    # Assert
    with pytest.raises(asyncio.CancelledError):
        await task
    assert store.load(request.id).status == RequestStatus.LEVEL1_APPROVED


@pytest.mark.asyncio
async def test_workflow_events_share_one_trace(capsys) -> None:
    request = make_cash_advance()
    orch = build_orchestrator(store=InMemoryRequestStore([request]), notifier=RecordingNotifier())

    await orch.submit_action(request.id, jane(1, "approve"))

    events = _events(capsys.readouterr().out)
    phases = [e["phase"] for e in events if e["event"] == "workflow.phase"]
    assert phases == ["loading", "deciding", "persisting", "notifying", "done"]
    assert len({e["trace_id"] for e in events}) == 1


@pytest.mark.asyncio
async def test_duplicate_liquidation_is_found_behind_many_newer_ones() -> None:
    # Arrange: the first liquidation against the advance is the oldest of 1001
    store = InMemoryRequestStore()
    orch = build_orchestrator(store=store, notifier=RecordingNotifier())
    cash_advance = await orch.file_cash_advance(REQUESTER, advance_type="support", amount="3000")
    await orch.submit_action(cash_advance.id, jane(1, "approve"))
    await orch.submit_action(cash_advance.id, mark(2, "approve"))
    items = [ExpenseItem(gas=Decimal("2800"))]
    await orch.file_liquidation(REQUESTER, cash_advance_id=cash_advance.id, items=items)
    for n in range(1000):
        store.insert(
            make_liquidation(
                request_id=f"liq_{n:04d}",
                cash_advance_id=f"ca_{n:04d}",
                created_at=FIXED_NOW + timedelta(minutes=n + 1),
            )
        )

    # Act / Assert
    with pytest.raises(InvariantViolation, match="already exists"):
        await orch.file_liquidation(REQUESTER, cash_advance_id=cash_advance.id, items=items)
    assert store.find_liquidation(cash_advance.id).id != "liq_0000"


@pytest.mark.asyncio
async def test_store_refuses_a_second_liquidation_filed_concurrently() -> None:
    # Arrange: both filings passed the early check before either was stored
    store = InMemoryRequestStore()
    store.insert(make_liquidation(request_id="liq_first", cash_advance_id="ca_777"))
    orch = build_orchestrator(store=store, notifier=RecordingNotifier())

    # Act / Assert
    with pytest.raises(InvariantViolation, match="already exists"):
        await orch.create_request(make_liquidation(request_id="liq_second", cash_advance_id="ca_777"))
    assert store.find_liquidation("ca_777").id == "liq_first"


@pytest.mark.asyncio
async def test_level1_approver_cannot_act_at_level2() -> None:
    # Arrange
    request = advance(make_cash_advance(), jane(1, "approve"))
    store = InMemoryRequestStore([request])
    notifier = RecordingNotifier()
    orch = build_orchestrator(store=store, notifier=notifier)

    # Act
    with pytest.raises(PermissionDenied) as exc_info:
        await orch.submit_action(request.id, jane(2, "approve"))

    # Assert
    assert exc_info.value.code == "permission_denied"
    assert exc_info.value.retryable is False
    assert store.load(request.id) == request
    assert notifier.calls == 0


@pytest.mark.asyncio
async def test_requester_cannot_approve_their_own_request(capsys) -> None:
    request = make_cash_advance()
    store = InMemoryRequestStore([request])
    orch = build_orchestrator(store=store, notifier=RecordingNotifier())
    self_approval = Action(level=1, outcome="approve", actor_id=REQUESTER.id, actor_name=REQUESTER.name)

    with pytest.raises(PermissionDenied):
        await orch.submit_action(request.id, self_approval)

    assert store.load(request.id).status == RequestStatus.PENDING_LEVEL1
    denied = [e for e in _events(capsys.readouterr().out) if e["event"] == "workflow.permission.denied"]
    assert denied[0]["permission_key"] == "approve_cash_advance_level1"
    assert denied[0]["level"] == "warning"


@pytest.mark.asyncio
async def test_liquidation_actions_check_liquidation_permissions() -> None:
    # Arrange: Jane may approve cash advances but not liquidations
    request = make_liquidation()
    store = InMemoryRequestStore([request])
    grants = {"approve_cash_advance_level1": ["mgr_jane"]}
    orch = build_orchestrator(store=store, notifier=RecordingNotifier(), grants=grants)

    # Act / Assert
    with pytest.raises(PermissionDenied):
        await orch.submit_action(request.id, jane(1, "approve"))
