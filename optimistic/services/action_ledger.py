"""Action Ledger — bounded, time-boxed undo/redo history for destructive mutations.

Invariants:
    - History holds at most max_history entries; the oldest is evicted first
    - record() clears the redo stack unconditionally (linear history, no branches)
    - undo()/redo() move an entry between stacks only after its step succeeded;
      a failed step leaves both stacks untouched and returns False
    - With a timeout, history entries older than it are dropped unseen: their undo step
      is never invoked
    - undo()/redo() are serialized; an entry is never inverted twice concurrently

Design Decisions:
    - Lazy expiry on every access against an injected monotonic clock, not timers:
      no event loop needed to record, deterministic in tests
    - A redone entry is stamped with the redo time, since it is a fresh commit
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from optimistic.config import Settings
from optimistic.core.domain_types import UndoId
from optimistic.core.errors import NotFoundError
from optimistic.core.protocols import ReversibleCommand
from optimistic.services.commands import CallbackCommand, Step

logger = logging.getLogger(__name__)


@dataclass
class UndoAction:
    """One reversible entry in the ledger."""
    id: UndoId
    description: str
    payload: Any
    command: ReversibleCommand
    recorded_at: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ActionLedger:
    """Undo history plus redo stack for committed destructive actions."""

    def __init__(
        self,
        max_history: int = 10,
        timeout_ms: int | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.max_history = max_history
        self.timeout_ms = timeout_ms
        self._clock = clock
        self._history: list[UndoAction] = []
        self._redo: list[UndoAction] = []
        self._generation = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: Callable[[], float] = time.monotonic,
    ) -> "ActionLedger":
        return cls(settings.undo_max_history, settings.undo_timeout_ms, clock=clock)

    # ─── Recording ───────────────────────────────────────────────

    def record(
        self,
        description: str,
        payload: Any,
        undo_fn: Step,
        redo_fn: Step | None = None,
    ) -> UndoId:
        """Record a committed action with plain undo/redo callables."""
        return self.record_command(description, payload, CallbackCommand(undo_fn, redo_fn))

    def record_command(
        self, description: str, payload: Any, command: ReversibleCommand,
    ) -> UndoId:
        entry = UndoAction(
            id=UndoId(f"undo-{uuid4().hex[:12]}"),
            description=description,
            payload=payload,
            command=command,
            recorded_at=self._clock(),
        )
        self._history = [*self._history, entry][-self.max_history:]
        self._redo = []
        self._generation += 1
        logger.debug(f"Recorded undoable action: {description}")
        return entry.id

    # ─── Undo / Redo ─────────────────────────────────────────────

    async def undo(self) -> bool:
        """Invert the most recent live entry. False if none or the step failed."""
        async with self._lock:
            self._expire()
            if not self._history:
                return False
            entry = self._history[-1]
            generation = self._generation
            try:
                await entry.command.invert()
            except Exception as e:
                logger.error(f"Undo failed for '{entry.description}': {e}", exc_info=True)
                return False
            self._history = [a for a in self._history if a.id != entry.id]
            # A record() during the await invalidated redo candidates.
            if generation == self._generation:
                self._redo = [*self._redo, entry]
            logger.info(f"Undid: {entry.description}")
            return True

    async def redo(self) -> bool:
        """Re-apply the most recently undone entry. False if none, no redo step, or failed."""
        async with self._lock:
            self._expire()
            if not self._redo:
                return False
            entry = self._redo[-1]
            if not entry.command.can_redo:
                return False
            try:
                await entry.command.apply()
            except Exception as e:
                logger.error(f"Redo failed for '{entry.description}': {e}", exc_info=True)
                return False
            self._redo = [a for a in self._redo if a.id != entry.id]
            entry.recorded_at = self._clock()
            self._history = [*self._history, entry][-self.max_history:]
            logger.info(f"Redid: {entry.description}")
            return True

    # ─── Inspection ──────────────────────────────────────────────

    @property
    def can_undo(self) -> bool:
        self._expire()
        return bool(self._history)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def history_count(self) -> int:
        self._expire()
        return len(self._history)

    @property
    def history(self) -> tuple[UndoAction, ...]:
        self._expire()
        return tuple(self._history)

    def last_action(self) -> UndoAction | None:
        self._expire()
        return self._history[-1] if self._history else None

    def remove_action(self, undo_id: UndoId) -> None:
        """Drop an entry from either stack. Raises NotFoundError if absent."""
        self._expire()
        if not any(a.id == undo_id for a in (*self._history, *self._redo)):
            raise NotFoundError("UndoAction", undo_id)
        self._history = [a for a in self._history if a.id != undo_id]
        self._redo = [a for a in self._redo if a.id != undo_id]

    def clear_history(self) -> None:
        self._history = []
        self._redo = []

    def _expire(self) -> None:
        if self.timeout_ms is None:
            return
        cutoff = self._clock() - self.timeout_ms / 1000
        live = [a for a in self._history if a.recorded_at > cutoff]
        if len(live) != len(self._history):
            logger.debug(f"Expired {len(self._history) - len(live)} undo entries")
            self._history = live
