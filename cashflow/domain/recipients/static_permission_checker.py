from typing import Iterable, Mapping


class StaticPermissionChecker:
    """Checker backed by a fixed permission -> user ids mapping."""

    def __init__(self, grants: Mapping[str, Iterable[str]]):
        self._grants = {key: frozenset(user_ids) for key, user_ids in grants.items()}

    def has_permission(self, user_id: str, permission_key: str) -> bool:
        return user_id in self._grants.get(permission_key, frozenset())
