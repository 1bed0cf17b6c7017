from typing import Protocol


class PermissionChecker(Protocol):
    def has_permission(self, user_id: str, permission_key: str) -> bool:
        """True when an active user holds `permission_key`.

        Raises StoreUnavailable when the directory cannot be read.
        """
        ...
