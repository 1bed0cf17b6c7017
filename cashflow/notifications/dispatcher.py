import asyncio
from typing import Any, Optional

from pydantic import BaseModel, Field

from cashflow.core.errors import DeliveryError
from cashflow.domain.recipients import RecipientResolver
from cashflow.domain.requests import (
    ApprovalRequest,
    NotificationIntent,
    NotificationKind,
    RequestSnapshot,
)
from cashflow.observability.tracing import Span, log_event

from .base import Notifier


class DispatchRecord(BaseModel):
    """Delivery outcome for one recipient group."""
    kind: NotificationKind
    audience: str
    recipients: list[str] = Field(default_factory=list)
    ok: bool
    skipped: bool = False
    attempts: int = 0
    error: Optional[str] = None


class NotificationDispatcher:
    """
    Sends the notifications emitted by a committed transition.

    Responsibilities:
    - Resolve approver groups through the recipient resolver
    - Send every recipient group concurrently
    - Retry transient delivery errors up to `max_attempts`
    - Log and record each group's outcome

    Non-responsibilities:
    - Deciding which notifications a transition emits
    - Reporting delivery failure to the workflow caller
    """

    def __init__(
        self,
        *,
        resolver: RecipientResolver,
        notifier: Notifier,
        max_attempts: int = 1,
    ):
        self._resolver = resolver
        self._notifier = notifier
        self._max_attempts = max(1, max_attempts)

    async def dispatch(
        self,
        *,
        trace_id: str,
        request: ApprovalRequest,
        intents: tuple[NotificationIntent, ...] | list[NotificationIntent],
    ) -> list[DispatchRecord]:
        """
        Attempt every notification and return one record per intent.

        Never raises for delivery or lookup failures; they only show up as
        records with `ok=False` and in the log.
        """
        snapshot = RequestSnapshot.from_request(request)
        return await self._gather_preserve_order(
            [self._dispatch_one(trace_id=trace_id, snapshot=snapshot, intent=i) for i in intents]
        )

    async def _dispatch_one(
        self,
        *,
        trace_id: str,
        snapshot: RequestSnapshot,
        intent: NotificationIntent,
    ) -> DispatchRecord:
        fields = {
            "request_id": snapshot.id,
            "kind": intent.kind.value,
            "audience": intent.audience,
        }

        try:
            recipients = self._recipients_for(intent)
        except Exception as exc:  # noqa: BLE001 - lookup failure must not fail the workflow
            log_event("notification.failed", trace_id=trace_id, level="error", error=str(exc), **fields)
            return DispatchRecord(kind=intent.kind, audience=intent.audience, ok=False, error=str(exc))

        if not recipients:
            log_event(
                "notification.skipped",
                trace_id=trace_id,
                level="warning",
                reason="no recipients hold the permission",
                **fields,
            )
            return DispatchRecord(kind=intent.kind, audience=intent.audience, ok=False, skipped=True)

        span = Span(name=f"notify.{intent.kind.value}", trace_id=trace_id)
        span.attributes["recipient_count"] = len(recipients)
        attempts = 0
        last_error: Exception | None = None

        try:
            while attempts < self._max_attempts:
                attempts += 1
                try:
                    await self._notifier.send(recipients, intent.kind, snapshot)
                except DeliveryError as exc:
                    last_error = exc
                    if not exc.transient:
                        break
                    continue
                except Exception as exc:  # noqa: BLE001 - boundary wrapper for notifier bugs
                    last_error = exc
                    break

                log_event(
                    "notification.delivered",
                    trace_id=trace_id,
                    recipients=recipients,
                    attempts=attempts,
                    **fields,
                )
                return DispatchRecord(
                    kind=intent.kind,
                    audience=intent.audience,
                    recipients=recipients,
                    ok=True,
                    attempts=attempts,
                )

            span.fail(last_error)
        finally:
            span.end()
            log_event("span.end", trace_id=trace_id, span=span)

        log_event(
            "notification.failed",
            trace_id=trace_id,
            level="error",
            recipients=recipients,
            attempts=attempts,
            error=str(last_error),
            **fields,
        )
        return DispatchRecord(
            kind=intent.kind,
            audience=intent.audience,
            recipients=recipients,
            ok=False,
            attempts=attempts,
            error=str(last_error),
        )

    def _recipients_for(self, intent: NotificationIntent) -> list[str]:
        if intent.permission_key is None:
            return [r for r in intent.recipients if r]
        return self._resolver.resolve_emails(intent.permission_key)

    @staticmethod
    async def _gather_preserve_order(coros: list[Any]) -> list[Any]:
        """Gather coroutines concurrently while preserving input order."""
        return await asyncio.gather(*coros)
