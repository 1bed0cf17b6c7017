"""Notification renderer (strict placeholder substitution).

Rendering is kept apart from transport so:
- it can be tested independently
- every notifier sends the same wording
- templates stay clean and diffable
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from string import Template

from cashflow.domain.requests import NotificationKind, RequestSnapshot, RequestType
from cashflow.domain.requests.snapshot import LevelSnapshot

_CURRENCY_SYMBOLS = {'PHP': '₱', 'USD': '$', 'EUR': '€'}

_REQUEST_LABELS = {
    RequestType.CASH_ADVANCE: 'Cash Advance',
    RequestType.LIQUIDATION: 'Liquidation',
}

SUBJECT_TEMPLATES = {
    NotificationKind.LEVEL1_APPROVAL_NEEDED: '[Level 1 Approval] ${label} Request - ${requester_name} - ${amount}',
    NotificationKind.LEVEL2_APPROVAL_NEEDED: '[Level 2 Approval] ${label} Request - ${requester_name} - ${amount}',
    NotificationKind.REQUESTER_APPROVED: '${label} Approved - ${amount}',
    NotificationKind.REQUESTER_REJECTED: '${label} Rejected - ${amount}',
}

BODY_TEMPLATES = {
    NotificationKind.LEVEL1_APPROVAL_NEEDED: (
        'A new ${label_lower} request from ${requester_name} (${requester_email}) '
        'is awaiting your Level 1 review.\n\n'
        '${figures}\n\n'
        'Request ID: ${request_id}'
    ),
    NotificationKind.LEVEL2_APPROVAL_NEEDED: (
        'A ${label_lower} request from ${requester_name} (${requester_email}) '
        'passed Level 1 review and is awaiting your Level 2 review.\n\n'
        '${figures}\n\n'
        'Level 1 approved by ${reviewer_name} on ${decided_on}.${comment_line}\n\n'
        'Request ID: ${request_id}'
    ),
    NotificationKind.REQUESTER_APPROVED: (
        'Hi ${requester_name},\n\n'
        'Your ${label_lower} request has been fully approved.\n\n'
        '${figures}\n\n'
        'Final approval by ${reviewer_name} on ${decided_on}.${comment_line}\n\n'
        'Request ID: ${request_id}'
    ),
    NotificationKind.REQUESTER_REJECTED: (
        'Hi ${requester_name},\n\n'
        'Your ${label_lower} request was rejected at Level ${rejected_level}.\n\n'
        '${figures}\n\n'
        'Reviewed by ${reviewer_name} on ${decided_on}.${comment_line}\n\n'
        'Request ID: ${request_id}'
    ),
}


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str


def format_amount(value: Decimal, currency: str = 'PHP') -> str:
    """Format money the way finance reads it, e.g. ₱5,000.00."""
    symbol = _CURRENCY_SYMBOLS.get(currency, f'{currency} ')
    return f'{symbol}{value:,.2f}'


class NotificationRenderer:
    """Render notification templates with strict placeholder rules."""

    def __init__(self, *, currency: str = 'PHP') -> None:
        self._currency = currency

    def render(self, kind: NotificationKind, snapshot: RequestSnapshot) -> RenderedMessage:
        """Render the subject and body for one notification.

        Raises:
            ValueError: If a template references an unknown variable.
        """
        variables = self._variables(kind, snapshot)
        try:
            return RenderedMessage(
                subject=Template(SUBJECT_TEMPLATES[kind]).substitute(variables),
                body=Template(BODY_TEMPLATES[kind]).substitute(variables),
            )
        except KeyError as exc:
            raise ValueError(f'Missing template variable: {exc}') from exc

    def _variables(self, kind: NotificationKind, snapshot: RequestSnapshot) -> dict[str, str]:
        label = _REQUEST_LABELS[snapshot.request_type]
        decision = _deciding_level(kind, snapshot)

        return {
            'label': label,
            'label_lower': label.lower(),
            'requester_name': snapshot.requester_name,
            'requester_email': snapshot.requester_email,
            'amount': format_amount(snapshot.headline_amount, self._currency),
            'request_id': snapshot.id,
            'figures': self._figures(snapshot),
            'reviewer_name': decision.approver_name if decision else '',
            'decided_on': decision.decided_at.strftime('%B %d, %Y') if decision else '',
            'comment_line': f'\nComment: {decision.comment}' if decision and decision.comment else '',
            'rejected_level': str(snapshot.rejected_at_level or ''),
        }

    def _figures(self, snapshot: RequestSnapshot) -> str:
        def money(value: Decimal | None) -> str:
            return format_amount(value or Decimal('0'), self._currency)

        if snapshot.request_type == RequestType.LIQUIDATION:
            lines = [
                f'Cash advance: {money(snapshot.cash_advance_amount)}',
                f'Total expenses: {money(snapshot.total_expenses)}',
                f'Return to company: {money(snapshot.return_to_company)}',
                f'Reimbursement: {money(snapshot.reimbursement)}',
            ]
            if snapshot.store_id:
                lines.append(f'Store: {snapshot.store_id}')
            if snapshot.ticket_id:
                lines.append(f'Ticket: {snapshot.ticket_id}')
            if snapshot.liquidation_date:
                lines.append(f'Liquidation date: {snapshot.liquidation_date:%B %d, %Y}')
        else:
            lines = [
                f'Type: {(snapshot.advance_type or "").title()}',
                f'Amount: {money(snapshot.amount)}',
            ]
            if snapshot.purpose:
                lines.append(f'Purpose: {snapshot.purpose}')
            if snapshot.date_requested:
                lines.append(f'Date needed: {snapshot.date_requested:%B %d, %Y}')
        return '\n'.join(lines)


def _deciding_level(kind: NotificationKind, snapshot: RequestSnapshot) -> LevelSnapshot | None:
    """The audit entry the notification reports on."""
    if kind == NotificationKind.LEVEL1_APPROVAL_NEEDED:
        return None
    if kind == NotificationKind.LEVEL2_APPROVAL_NEEDED:
        return snapshot.level1
    return snapshot.level2 or snapshot.level1
