from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from cashflow.core.errors import StoreUnavailable


class SqlRecipientResolver:
    """Reads approver groups from the users / user_permissions tables.

    Also answers permission checks for actors, so both questions are asked
    of the same directory.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def resolve_emails(self, permission_key: str) -> list[str]:
        query = text("""
                SELECT DISTINCT u.email
                FROM users u
                JOIN user_permissions p ON p.user_id = u.id
                WHERE p.permission_key = :permission_key
                  AND u.is_active = :active
                  AND u.email IS NOT NULL
                ORDER BY u.email
                """)

        with self._session_factory() as db:
            rows = db.execute(query, {"permission_key": permission_key, "active": True})
            return [row.email for row in rows if row.email]

    def has_permission(self, user_id: str, permission_key: str) -> bool:
        query = text("""
                SELECT 1
                FROM users u
                JOIN user_permissions p ON p.user_id = u.id
                WHERE u.id = :user_id
                  AND p.permission_key = :permission_key
                  AND u.is_active = :active
                LIMIT 1
                """)

        try:
            with self._session_factory() as db:
                row = db.execute(
                    query,
                    {"user_id": user_id, "permission_key": permission_key, "active": True},
                ).first()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Could not check permissions for {user_id}: {exc}") from exc
        return row is not None
