"""Mutation Store — canonical entity collection with optimistic create/update/remove.

Invariants:
    - Every speculative edit is visible in `items` before the server call is awaited
    - create() correlates the server entity with its placeholder by action id, never by identity
    - Failed create removes the placeholder; failed update restores the captured version;
      failed remove re-appends the removed entity (original position not kept)
    - Each PendingAction leaves PENDING exactly once; its bookkeeping entry is dropped
      after a fixed delay (1s success / 2s failure) without touching the collection
    - Every mutation rebuilds the whole collection from the current one

Design Decisions:
    - Collection stored as _Slot(entity, action_id): a placeholder keeps its action tag until
      confirmed, so copies of the entity cannot strand it
    - UNAUTHORIZED is rolled back and absorbed (returns None). A SessionExpiredError means
      RetryPolicy already tore the session down; a bare 401 is torn down here, once
    - Same-id concurrent mutations are not serialized: last completion wins
"""

import asyncio
import copy
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from uuid import uuid4

from optimistic.config import Settings
from optimistic.core.domain_types import (
    ActionId, ActionStatus, Entity, EntityId, ErrorKind, MutationKind, entity_id,
)
from optimistic.core.error_classifier import ErrorClassifier
from optimistic.core.errors import (
    ErrorSeverity, InvalidTransitionError, NotFoundError, SessionExpiredError,
)
from optimistic.core.protocols import (
    CredentialStore, Notifier, PerformCreate, PerformDelete, PerformUpdate,
)
from optimistic.infrastructure.observability import ErrorLog
from optimistic.services.retry_policy import end_session

logger = logging.getLogger(__name__)


@dataclass
class PendingAction:
    """An in-flight speculative mutation."""
    id: ActionId
    kind: MutationKind
    payload: Entity
    previous_snapshot: Entity | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: ActionStatus = ActionStatus.PENDING

    @property
    def entity_id(self) -> EntityId:
        return entity_id(self.payload)

    def resolve(self, status: ActionStatus) -> None:
        """Move to a terminal status. Raises if already terminal."""
        if self.status.is_terminal or not status.is_terminal:
            raise InvalidTransitionError(self.id, self.status.value, status.value)
        self.status = status


@dataclass(frozen=True)
class _Slot:
    entity: Entity
    action_id: ActionId | None = None


class MutationStore:
    """Holds the UI-visible collection and applies speculative edits around server calls."""

    def __init__(
        self,
        items: Iterable[Entity] = (),
        *,
        notifier: Notifier | None = None,
        classifier: ErrorClassifier | None = None,
        credentials: CredentialStore | None = None,
        error_log: ErrorLog | None = None,
        success_cleanup_ms: int = 1000,
        failure_cleanup_ms: int = 2000,
    ):
        self._slots: list[_Slot] = [_Slot(item) for item in items]
        self._actions: dict[ActionId, PendingAction] = {}
        self._cleanups: dict[ActionId, asyncio.TimerHandle] = {}
        self.notifier = notifier
        self.classifier = classifier or ErrorClassifier()
        self.credentials = credentials
        self.error_log = error_log
        self.success_cleanup_ms = success_cleanup_ms
        self.failure_cleanup_ms = failure_cleanup_ms

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        items: Iterable[Entity] = (),
        *,
        notifier: Notifier | None = None,
        classifier: ErrorClassifier | None = None,
        credentials: CredentialStore | None = None,
        error_log: ErrorLog | None = None,
    ) -> "MutationStore":
        return cls(
            items,
            notifier=notifier,
            classifier=classifier,
            credentials=credentials,
            error_log=error_log,
            success_cleanup_ms=settings.pending_success_cleanup_ms,
            failure_cleanup_ms=settings.pending_failure_cleanup_ms,
        )

    # ─── Collection access ───────────────────────────────────────

    @property
    def items(self) -> list[Entity]:
        """Snapshot of the canonical collection, speculative edits included."""
        return [slot.entity for slot in self._slots]

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[Entity]:
        return iter(self.items)

    def __contains__(self, item_id: object) -> bool:
        return any(entity_id(slot.entity) == item_id for slot in self._slots)

    def get(self, item_id: EntityId) -> Entity | None:
        for slot in self._slots:
            if entity_id(slot.entity) == item_id:
                return slot.entity
        return None

    def replace_all(self, items: Iterable[Entity]) -> None:
        """Swap in a fresh server listing. In-flight creates lose their placeholder."""
        self._slots = [_Slot(item) for item in items]

    # ─── Pending bookkeeping ─────────────────────────────────────

    def is_pending(self, item_id: EntityId | None = None) -> bool:
        """True if a PENDING action targets `item_id` (or any action when omitted)."""
        return any(
            action.status is ActionStatus.PENDING
            and (item_id is None or action.entity_id == item_id)
            for action in self._actions.values()
        )

    def pending_actions(self) -> list[PendingAction]:
        return [a for a in self._actions.values() if a.status is ActionStatus.PENDING]

    @property
    def pending_count(self) -> int:
        return len(self.pending_actions())

    @property
    def has_pending(self) -> bool:
        return self.is_pending()

    def tracked_actions(self) -> list[PendingAction]:
        """Every action still held for UI indicators, terminal ones included."""
        return list(self._actions.values())

    async def aclose(self) -> None:
        """Cancel scheduled cleanups and drop terminal bookkeeping."""
        for handle in self._cleanups.values():
            handle.cancel()
        self._cleanups.clear()
        self._actions = {
            k: a for k, a in self._actions.items() if a.status is ActionStatus.PENDING
        }

    # ─── Optimistic operations ───────────────────────────────────

    async def create(
        self,
        item: Entity,
        perform_create: PerformCreate,
        *,
        success_message: str | None = None,
    ) -> Entity | None:
        """Append `item` now; swap in the server entity on success, drop it on failure."""
        action = self._begin(MutationKind.CREATE, item)
        self._slots = [*self._slots, _Slot(item, action.id)]
        try:
            result = await perform_create(item)
        except Exception as e:
            self._slots = [s for s in self._slots if s.action_id != action.id]
            if self._fail(action, e):
                return None
            raise
        self._slots = [
            _Slot(result) if s.action_id == action.id else s for s in self._slots
        ]
        self._succeed(action, success_message)
        return result

    async def update(
        self,
        updated_item: Entity,
        perform_update: PerformUpdate,
        *,
        success_message: str | None = None,
    ) -> Entity | None:
        """Replace in place now; confirm with the server version or restore the old one."""
        item_id = entity_id(updated_item)
        previous = self.get(item_id)
        if previous is None:
            raise NotFoundError("Entity", item_id)
        snapshot = copy.deepcopy(previous)
        action = self._begin(MutationKind.UPDATE, updated_item, snapshot)
        self._put(item_id, updated_item)
        try:
            result = await perform_update(updated_item)
        except Exception as e:
            self._put(item_id, snapshot)
            if self._fail(action, e):
                return None
            raise
        self._put(item_id, result)
        self._succeed(action, success_message)
        return result

    async def remove(
        self,
        item_id: EntityId,
        perform_delete: PerformDelete,
        *,
        success_message: str | None = None,
    ) -> Entity | None:
        """Drop the entity now; re-append it if the server refuses.

        Returns the removed entity on success (useful for recording an undo),
        None when the session expired mid-call.
        """
        removed = self.get(item_id)
        if removed is None:
            raise NotFoundError("Entity", item_id)
        action = self._begin(MutationKind.DELETE, removed, removed)
        self._slots = [s for s in self._slots if entity_id(s.entity) != item_id]
        try:
            await perform_delete(item_id)
        except Exception as e:
            self._slots = [*self._slots, _Slot(removed)]
            if self._fail(action, e):
                return None
            raise
        self._succeed(action, success_message)
        return removed

    # ─── Internals ───────────────────────────────────────────────

    def _put(self, item_id: EntityId, entity: Entity) -> None:
        self._slots = [
            replace(s, entity=entity) if entity_id(s.entity) == item_id else s
            for s in self._slots
        ]

    def _begin(
        self, kind: MutationKind, payload: Entity, previous: Entity | None = None,
    ) -> PendingAction:
        action = PendingAction(
            id=ActionId(f"opt-{kind.value}-{uuid4().hex[:12]}"),
            kind=kind,
            payload=payload,
            previous_snapshot=previous,
        )
        self._actions[action.id] = action
        logger.debug(
            f"Optimistic {kind.value} applied",
            extra={"action_id": action.id, "mutation_kind": kind.value},
        )
        return action

    def _succeed(self, action: PendingAction, message: str | None) -> None:
        action.resolve(ActionStatus.SUCCESS)
        self._schedule_cleanup(action.id, self.success_cleanup_ms)
        logger.info(
            f"Optimistic {action.kind.value} confirmed",
            extra={"action_id": action.id, "mutation_kind": action.kind.value},
        )
        if message and self.notifier is not None:
            self.notifier.notify(message, ErrorSeverity.INFO)

    def _fail(self, action: PendingAction, error: Exception) -> bool:
        """Resolve as FAILED after rollback. True when the failure is absorbed (UNAUTHORIZED)."""
        action.resolve(ActionStatus.FAILED)
        self._schedule_cleanup(action.id, self.failure_cleanup_ms)
        details = self.classifier.parse(error)
        unauthorized = details.kind is ErrorKind.UNAUTHORIZED
        if unauthorized and not isinstance(error, SessionExpiredError):
            end_session(self.credentials)
        logger.warning(
            f"Optimistic {action.kind.value} rolled back: {error}",
            extra={
                "action_id": action.id,
                "mutation_kind": action.kind.value,
                "error_details": details,
            },
        )
        if self.error_log is not None:
            self.error_log.record(
                details, f"{action.kind.value} {action.entity_id}", action_id=action.id,
            )
        if self.notifier is not None:
            self.notifier.notify(details.user_message, details.severity)
        return unauthorized

    def _schedule_cleanup(self, action_id: ActionId, delay_ms: int) -> None:
        loop = asyncio.get_running_loop()
        self._cleanups[action_id] = loop.call_later(
            delay_ms / 1000, self._forget, action_id,
        )

    def _forget(self, action_id: ActionId) -> None:
        self._cleanups.pop(action_id, None)
        self._actions.pop(action_id, None)
