"""Workflow orchestration: load -> decide -> guarded persist -> notify.

This is the only place that touches the store on behalf of an approval
action. It is responsible for:
- reading the authoritative record on every call (no cross-call memory)
- checking the actor holds the approver permission for the level
- asking the state machine for a decision (pure, no I/O)
- committing through the store's compare-and-swap only
- dispatching notifications after the commit, best-effort
- Observability: trace + spans + phase events

Notification policy: all recipient groups are attempted concurrently and
awaited before `submit_action` returns. A delivery failure never changes the
reported outcome; the persisted state is the source of truth.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable

from cashflow.core.errors import (
    ConcurrentModification,
    InvariantViolation,
    PermissionDenied,
    RequestNotFound,
    StoreUnavailable,
)
from cashflow.domain.recipients import PermissionChecker
from cashflow.domain.requests import (
    Action,
    ApprovalRequest,
    CashAdvanceType,
    ExpenseItem,
    NotificationIntent,
    RejectedAction,
    Requester,
    RequestStatus,
    approver_permission,
    ensure_valid,
    new_cash_advance,
    new_liquidation,
)
from cashflow.domain.requests.validation import DEFAULT_TOLERANCE, DUPLICATE_LIQUIDATION
from cashflow.domain.store import RequestFilters, RequestStore
from cashflow.domain.workflow import apply, decide, error_for, level1_notification
from cashflow.notifications import DispatchRecord, NotificationDispatcher
from cashflow.observability.tracing import Span, log_event, new_trace_id


class OrchestratorPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    DECIDING = "deciding"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"
    DONE = "done"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowOrchestrator:
    """Coordinates approval actions against the request store."""

    def __init__(
        self,
        *,
        store: RequestStore,
        dispatcher: NotificationDispatcher,
        permissions: PermissionChecker,
        clock: Callable[[], datetime] = _utcnow,
        amount_tolerance: Decimal = DEFAULT_TOLERANCE,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._permissions = permissions
        self._clock = clock
        self._tolerance = amount_tolerance

    async def submit_action(self, request_id: str, action: Action) -> ApprovalRequest:
        """Apply one approve/reject decision to a request.

        Returns:
            The committed record (version advanced by one).

        Raises:
            RequestNotFound: Unknown request id.
            PermissionDenied: The actor may not decide at this level.
            InvalidTransition: Action not valid for the current status.
            InvariantViolation: The stored record does not reconcile.
            ConcurrentModification: Another actor committed first; re-fetch.
            StoreUnavailable: Load or write failed; safe to retry.
        """
        trace_id = new_trace_id()
        log_event(
            "workflow.start",
            trace_id=trace_id,
            request_id=request_id,
            level_acted=int(action.level),
            outcome=action.outcome.value,
            actor_id=action.actor_id,
        )

        # -------------------------
        # 1) LOAD
        # -------------------------
        self._phase(trace_id, OrchestratorPhase.LOADING, request_id)
        current = self._load(trace_id, request_id)

        # -------------------------
        # 2) DECIDE (pure)
        # -------------------------
        self._phase(trace_id, OrchestratorPhase.DECIDING, request_id)
        self._authorize(trace_id, current, action)
        outcome = decide(current, action, now=self._clock(), tolerance=self._tolerance)

        if isinstance(outcome, RejectedAction):
            log_event(
                "workflow.decision.rejected",
                trace_id=trace_id,
                level="warning",
                request_id=request_id,
                status=current.status.value,
                error=outcome.error.value,
                reason=outcome.reason,
            )
            self._phase(trace_id, OrchestratorPhase.DONE, request_id, error=outcome.error.value)
            raise error_for(outcome, request_id=request_id)

        # -------------------------
        # 3) PERSIST (compare-and-swap)
        # -------------------------
        self._phase(trace_id, OrchestratorPhase.PERSISTING, request_id)
        updated = apply(current, outcome)
        self._persist(trace_id, current, updated)

        # -------------------------
        # 4) NOTIFY (best-effort, after commit)
        # -------------------------
        self._phase(trace_id, OrchestratorPhase.NOTIFYING, request_id)
        await self._notify(trace_id, updated, outcome.notifications)

        self._phase(trace_id, OrchestratorPhase.DONE, request_id, status=updated.status.value)
        return updated

    async def create_request(self, request: ApprovalRequest) -> ApprovalRequest:
        """Store a newly filed request and alert the Level 1 approvers."""
        trace_id = new_trace_id()

        if request.status != RequestStatus.PENDING_LEVEL1 or request.version != 1:
            raise InvariantViolation(
                "New requests must start pending Level 1 at version 1.",
                request_id=request.id,
            )
        ensure_valid(request, tolerance=self._tolerance)

        try:
            created = self._store.insert(request)
        except StoreUnavailable as exc:
            log_event("workflow.store.unavailable", trace_id=trace_id, level="error", request_id=request.id, error=str(exc))
            raise

        log_event(
            "workflow.created",
            trace_id=trace_id,
            request_id=created.id,
            request_type=created.request_type.value,
            requester_id=created.requester_id,
        )
        await self._notify(trace_id, created, (level1_notification(created),))
        return created

    async def file_cash_advance(
        self,
        requester: Requester,
        *,
        advance_type: CashAdvanceType | str,
        amount,
        purpose: str | None = None,
        date_requested: date | None = None,
    ) -> ApprovalRequest:
        request = new_cash_advance(
            requester,
            advance_type=advance_type,
            amount=amount,
            purpose=purpose,
            date_requested=date_requested,
            created_at=self._clock(),
            tolerance=self._tolerance,
        )
        return await self.create_request(request)

    async def file_liquidation(
        self,
        requester: Requester,
        *,
        cash_advance_id: str,
        items: Iterable[ExpenseItem],
        store_id: str | None = None,
        ticket_id: str | None = None,
        liquidation_date: date | None = None,
    ) -> ApprovalRequest:
        """File a liquidation against the requester's approved support cash advance."""
        cash_advance = self._store.load(cash_advance_id)

        # insert() also refuses a second liquidation
        if self._store.find_liquidation(cash_advance_id) is not None:
            raise InvariantViolation(DUPLICATE_LIQUIDATION, request_id=cash_advance_id)

        request = new_liquidation(
            requester,
            cash_advance=cash_advance,
            items=items,
            store_id=store_id,
            ticket_id=ticket_id,
            liquidation_date=liquidation_date,
            created_at=self._clock(),
            tolerance=self._tolerance,
        )
        return await self.create_request(request)

    def get_request(self, request_id: str) -> ApprovalRequest:
        """Display read; no version guard."""
        return self._store.load(request_id)

    def list_requests(self, filters: RequestFilters) -> list[ApprovalRequest]:
        return self._store.list_requests(filters)

    # ------------------------------
    # Pipeline steps
    # ------------------------------

    def _load(self, trace_id: str, request_id: str) -> ApprovalRequest:
        span = Span(name="request.load", trace_id=trace_id)
        try:
            return self._store.load(request_id)
        except RequestNotFound:
            span.fail("request_not_found")
            self._phase(trace_id, OrchestratorPhase.DONE, request_id, error="request_not_found")
            raise
        except StoreUnavailable as exc:
            span.fail(exc)
            log_event("workflow.store.unavailable", trace_id=trace_id, level="error", request_id=request_id, error=str(exc))
            self._phase(trace_id, OrchestratorPhase.DONE, request_id, error=exc.code)
            raise
        finally:
            span.end()
            log_event("span.end", trace_id=trace_id, span=span)

    def _authorize(self, trace_id: str, current: ApprovalRequest, action: Action) -> None:
        permission_key = approver_permission(current.request_type, action.level)
        if self._permissions.has_permission(action.actor_id, permission_key):
            return

        log_event(
            "workflow.permission.denied",
            trace_id=trace_id,
            level="warning",
            request_id=current.id,
            actor_id=action.actor_id,
            permission_key=permission_key,
        )
        self._phase(trace_id, OrchestratorPhase.DONE, current.id, error=PermissionDenied.code)
        raise PermissionDenied(
            f"You do not have permission to act at Level {int(action.level)} on this request.",
            request_id=current.id,
        )

    def _persist(self, trace_id: str, current: ApprovalRequest, updated: ApprovalRequest) -> None:
        span = Span(name="request.persist", trace_id=trace_id)
        span.attributes["expected_version"] = current.version
        try:
            committed = self._store.compare_and_swap(current.id, current.version, updated)
        except StoreUnavailable as exc:
            span.fail(exc)
            log_event("workflow.store.unavailable", trace_id=trace_id, level="error", request_id=current.id, error=str(exc))
            self._phase(trace_id, OrchestratorPhase.DONE, current.id, error=exc.code)
            raise
        finally:
            span.end()
            log_event("span.end", trace_id=trace_id, span=span)

        if not committed:
            log_event(
                "workflow.conflict",
                trace_id=trace_id,
                level="warning",
                request_id=current.id,
                expected_version=current.version,
            )
            self._phase(trace_id, OrchestratorPhase.DONE, current.id, error="concurrent_modification")
            raise ConcurrentModification(
                "This request was just updated by someone else. Reload it and try again.",
                request_id=current.id,
            )

        log_event(
            "workflow.committed",
            trace_id=trace_id,
            request_id=updated.id,
            status=updated.status.value,
            version=updated.version,
        )

    async def _notify(
        self,
        trace_id: str,
        request: ApprovalRequest,
        intents: tuple[NotificationIntent, ...],
    ) -> list[DispatchRecord]:
        span = Span(name="notifications.dispatch", trace_id=trace_id)
        span.attributes["count"] = len(intents)
        try:
            return await self._dispatcher.dispatch(trace_id=trace_id, request=request, intents=intents)
        except asyncio.CancelledError:
            span.fail("cancelled")
            # The write already committed; only delivery is abandoned
            log_event(
                "workflow.notifications.abandoned",
                trace_id=trace_id,
                level="warning",
                request_id=request.id,
            )
            raise
        finally:
            span.end()
            log_event("span.end", trace_id=trace_id, span=span)

    @staticmethod
    def _phase(trace_id: str, phase: OrchestratorPhase, request_id: str, **fields) -> None:
        log_event("workflow.phase", trace_id=trace_id, phase=phase.value, request_id=request_id, **fields)

