"""Undoable Mutations — committed store changes recorded in the ledger and offered as an Undo toast.

Invariants:
    - Nothing is recorded when the store call was absorbed (expired session) or raised
    - The notification's Undo action only undoes its own entry, and only while it is
      still the most recent live one; otherwise it does nothing and returns False
"""

import logging
from dataclasses import dataclass

from optimistic.core.domain_types import EntityId, UndoId
from optimistic.core.errors import ErrorSeverity
from optimistic.core.protocols import PerformCreate, PerformDelete
from optimistic.services.action_ledger import ActionLedger
from optimistic.services.commands import StoreCommand
from optimistic.services.mutation_store import MutationStore

logger = logging.getLogger(__name__)


@dataclass
class UndoNotification:
    """Notifier action bound to one ledger entry."""
    ledger: ActionLedger
    undo_id: UndoId
    label: str = "Undo"

    async def __call__(self) -> bool:
        last = self.ledger.last_action()
        if last is None or last.id != self.undo_id:
            logger.debug(f"Undo toast for {self.undo_id} is stale")
            return False
        return await self.ledger.undo()


async def remove_with_undo(
    store: MutationStore,
    ledger: ActionLedger,
    item_id: EntityId,
    perform_delete: PerformDelete,
    perform_restore: PerformCreate,
    *,
    description: str,
    undo_label: str = "Undo",
) -> UndoId | None:
    """Optimistically remove, record the inverse, and notify with an Undo action."""
    removed = await store.remove(item_id, perform_delete)
    if removed is None:
        return None
    undo_id = ledger.record_command(
        description, removed,
        StoreCommand.for_delete(store, removed, perform_restore, perform_delete),
    )
    if store.notifier is not None:
        store.notifier.notify(
            description, ErrorSeverity.INFO, UndoNotification(ledger, undo_id, undo_label),
        )
    return undo_id
