from typing import Iterable, Mapping


class StaticRecipientResolver:
    """Resolver backed by a fixed permission -> emails mapping."""

    def __init__(self, recipients: Mapping[str, Iterable[str]]):
        self._recipients = {key: list(emails) for key, emails in recipients.items()}

    def resolve_emails(self, permission_key: str) -> list[str]:
        return list(self._recipients.get(permission_key, []))
