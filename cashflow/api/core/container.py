# --------------------------------
# DI container
# --------------------------------
from functools import lru_cache

from cashflow.config import Settings, settings as default_settings
from cashflow.db.connection import build_engine, build_session_factory, init_db
from cashflow.domain.recipients import PermissionChecker, RecipientResolver, SqlRecipientResolver
from cashflow.domain.store import RequestStore, SqlRequestStore
from cashflow.notifications import (
    HttpEmailNotifier,
    NotificationDispatcher,
    NotificationRenderer,
    Notifier,
)
from cashflow.runtime.orchestrator import WorkflowOrchestrator


class Container:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        store: RequestStore | None = None,
        resolver: RecipientResolver | None = None,
        permissions: PermissionChecker | None = None,
        notifier: Notifier | None = None,
    ):
        self._settings = settings or default_settings

        if store is None or resolver is None or permissions is None:
            engine = build_engine(self._settings.database_url)
            init_db(engine)
            session_factory = build_session_factory(engine)
            store = store or SqlRequestStore(session_factory)
            directory = SqlRecipientResolver(session_factory)
            resolver = resolver or directory
            permissions = permissions or directory

        self._notifier = notifier or HttpEmailNotifier(
            self._settings.email_service_url,
            renderer=NotificationRenderer(currency=self._settings.currency),
            timeout=self._settings.email_timeout_seconds,
        )
        self._orchestrator = WorkflowOrchestrator(
            store=store,
            dispatcher=NotificationDispatcher(
                resolver=resolver,
                notifier=self._notifier,
                max_attempts=self._settings.delivery_attempts,
            ),
            permissions=permissions,
            amount_tolerance=self._settings.amount_tolerance,
        )

    @property
    def orchestrator(self) -> WorkflowOrchestrator:
        return self._orchestrator


@lru_cache
def get_container() -> Container:
    return Container()
