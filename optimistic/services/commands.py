"""Reversible Commands — undo/redo bodies recorded in the ActionLedger.

Invariants:
    - invert() reverses a committed mutation; apply() re-performs it
    - A command without a forward step reports can_redo = False and apply() is never called
    - StoreCommand routes both directions back through MutationStore, so undo/redo are
      themselves optimistic with rollback
    - A store call that rolled back and returned None (expired session) is a failed step

Design Decisions:
    - Tagged command objects (MutationKind + payload + two bound steps) instead of bare
      closures stored on the ledger entry
    - CallbackCommand accepts sync or async callables: UI handlers are often plain functions
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from optimistic.core.domain_types import Entity, MutationKind, entity_id
from optimistic.core.errors import CommandAbortedError
from optimistic.core.protocols import PerformCreate, PerformDelete, PerformUpdate
from optimistic.services.mutation_store import MutationStore

Step = Callable[[], Any]


async def _run(step: Step) -> None:
    outcome = step()
    if inspect.isawaitable(outcome):
        await outcome


@dataclass
class CallbackCommand:
    """Wraps caller-supplied undo/redo callables."""
    undo_fn: Step
    redo_fn: Step | None = None

    @property
    def can_redo(self) -> bool:
        return self.redo_fn is not None

    async def invert(self) -> None:
        await _run(self.undo_fn)

    async def apply(self) -> None:
        if self.redo_fn is None:
            return
        await _run(self.redo_fn)


@dataclass
class StoreCommand:
    """A committed MutationStore change, invertible through the same store."""
    kind: MutationKind
    payload: Entity
    forward: Callable[[], Awaitable[Any]]
    backward: Callable[[], Awaitable[Any]]

    @property
    def can_redo(self) -> bool:
        return True

    async def invert(self) -> None:
        if await self.backward() is None:
            raise CommandAbortedError(f"Undo of {self.kind.value}")

    async def apply(self) -> None:
        if await self.forward() is None:
            raise CommandAbortedError(f"Redo of {self.kind.value}")

    @classmethod
    def for_create(
        cls,
        store: MutationStore,
        created: Entity,
        perform_create: PerformCreate,
        perform_delete: PerformDelete,
    ) -> "StoreCommand":
        return cls(
            MutationKind.CREATE,
            created,
            forward=lambda: store.create(created, perform_create),
            backward=lambda: store.remove(entity_id(created), perform_delete),
        )

    @classmethod
    def for_update(
        cls,
        store: MutationStore,
        before: Entity,
        after: Entity,
        perform_update: PerformUpdate,
    ) -> "StoreCommand":
        return cls(
            MutationKind.UPDATE,
            after,
            forward=lambda: store.update(after, perform_update),
            backward=lambda: store.update(before, perform_update),
        )

    @classmethod
    def for_delete(
        cls,
        store: MutationStore,
        removed: Entity,
        perform_restore: PerformCreate,
        perform_delete: PerformDelete,
    ) -> "StoreCommand":
        """Undo re-creates `removed` via perform_restore; redo deletes it again."""
        return cls(
            MutationKind.DELETE,
            removed,
            forward=lambda: store.remove(entity_id(removed), perform_delete),
            backward=lambda: store.create(removed, perform_restore),
        )
