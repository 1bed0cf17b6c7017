from typing import Protocol


class RecipientResolver(Protocol):
    def resolve_emails(self, permission_key: str) -> list[str]:
        """Email addresses of users holding `permission_key`.

        Returns an empty list, never an error, when nobody holds it.
        """
        ...
