"""Notifier abstraction.

In production, a notifier might be:
- an internal email relay over HTTP
- an SMTP client
- a queue producer feeding a mail worker
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from cashflow.domain.requests import NotificationKind, RequestSnapshot


class Notifier(ABC):
    """Delivers one notification to one recipient group."""

    @abstractmethod
    async def send(
        self,
        recipients: list[str],
        kind: NotificationKind,
        payload: RequestSnapshot,
    ) -> None:
        """Attempt delivery once.

        Raises:
            DeliveryError: If the message was not accepted. Implementations
                never retry internally.
        """
        raise NotImplementedError
