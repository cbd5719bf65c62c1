"""Client Runtime — wires classifier, retry policy, HTTP client, and undo ledger per UI session.

Invariants:
    - One RetryPolicy (and thus one budget table) per runtime
    - The same CredentialStore instance feeds auth headers and receives session teardown
    - aclose() releases the HTTP connection pool and every store it created

Design Decisions:
    - Explicit composition root instead of module-level singletons: tests build isolated
      runtimes with fake transports, clocks, and notifiers
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx

from optimistic.config import Settings, get_settings
from optimistic.core.domain_types import Entity
from optimistic.core.error_classifier import ErrorClassifier
from optimistic.core.protocols import CredentialStore, Notifier
from optimistic.infrastructure.credentials import InMemoryCredentialStore
from optimistic.infrastructure.http_client import ResilientHttpClient
from optimistic.infrastructure.notifier import LoggingNotifier
from optimistic.infrastructure.observability import ErrorLog, setup_logging
from optimistic.services.action_ledger import ActionLedger
from optimistic.services.backoff import BackoffOptions, with_retry
from optimistic.services.mutation_store import MutationStore
from optimistic.services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ClientRuntime:
    """Everything one UI session needs to perform optimistic mutations."""
    settings: Settings
    classifier: ErrorClassifier
    credentials: CredentialStore
    notifier: Notifier
    retry_policy: RetryPolicy
    http: ResilientHttpClient
    ledger: ActionLedger
    error_log: ErrorLog
    _stores: list[MutationStore] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        credentials: CredentialStore | None = None,
        notifier: Notifier | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        configure_logging: bool = False,
    ) -> "ClientRuntime":
        settings = settings or get_settings()
        if configure_logging:
            setup_logging(settings.log_level, settings.log_format)
        classifier = ErrorClassifier()
        credentials = credentials or InMemoryCredentialStore()
        retry_policy = RetryPolicy.from_settings(settings, classifier, credentials)
        http = ResilientHttpClient.from_settings(
            settings, retry_policy, credentials, transport=transport,
        )
        logger.info(f"Client runtime ready for {settings.api_base_url}")
        return cls(
            settings=settings,
            classifier=classifier,
            credentials=credentials,
            notifier=notifier or LoggingNotifier(),
            retry_policy=retry_policy,
            http=http,
            ledger=ActionLedger.from_settings(settings),
            error_log=ErrorLog(settings.error_log_size),
        )

    def store(self, items: Iterable[Entity] = ()) -> MutationStore:
        """New MutationStore wired to this runtime's collaborators."""
        store = MutationStore.from_settings(
            self.settings, items,
            notifier=self.notifier,
            classifier=self.classifier,
            credentials=self.credentials,
            error_log=self.error_log,
        )
        self._stores.append(store)
        return store

    async def with_retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an idempotent call with the configured exponential backoff."""
        return await with_retry(
            operation, BackoffOptions.from_settings(self.settings), classifier=self.classifier,
        )

    async def aclose(self) -> None:
        for store in self._stores:
            await store.aclose()
        self._stores.clear()
        await self.http.aclose()
