"""HTTP notifier that calls the internal email service."""

from __future__ import annotations

import httpx

from cashflow.core.errors import DeliveryError
from cashflow.domain.requests import NotificationKind, RequestSnapshot

from .base import Notifier
from .renderer import NotificationRenderer


class HttpEmailNotifier(Notifier):
    """Deliver notifications by posting rendered emails to an HTTP service.

    The service owns SMTP credentials and sender identity; this side only
    renders the message and reports whether it was accepted.
    """

    def __init__(
        self,
        base_url: str,
        *,
        renderer: NotificationRenderer | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Create an HTTP email notifier.

        Args:
            base_url: Base URL of the email service (e.g. http://mail-svc:8001/v1).
            renderer: Template renderer for subject and body.
            client: Optional injected httpx client for testing / transport control.
            timeout: Per-request timeout in seconds.
        """
        self._base_url = base_url.rstrip('/')
        self._renderer = renderer or NotificationRenderer()
        self._client = client
        self._timeout = timeout

    async def send(
        self,
        recipients: list[str],
        kind: NotificationKind,
        payload: RequestSnapshot,
    ) -> None:
        message = self._renderer.render(kind, payload)
        url = f'{self._base_url}/notifications/email'
        body = {
            'to': list(recipients),
            'subject': message.subject,
            'body': message.body,
            'kind': kind.value,
            'request_id': payload.id,
        }

        try:
            if self._client is not None:
                resp = await self._client.post(url, json=body, timeout=self._timeout)
                resp.raise_for_status()
                return

            async with httpx.AsyncClient() as client:
                resp = await client.post(url, json=body, timeout=self._timeout)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            # 4xx means the service refused this message; resending will not help
            raise DeliveryError(
                f'Email service rejected {kind.value} with HTTP {status}',
                transient=status >= 500 or status == 429,
            ) from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f'Email service unreachable: {exc}', transient=True) from exc
