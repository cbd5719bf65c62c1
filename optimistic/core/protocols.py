"""Boundary Protocols — contracts between the optimistic core and its collaborators.

Invariants:
    - Core NEVER imports a concrete credential store, notifier, or HTTP client
    - Implementations are injected by the owner of the UI session

Design Decisions:
    - Protocol over ABC: structural subtyping, tests substitute plain fakes
    - Server calls are plain async callables, not a Protocol: any coroutine function fits
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from optimistic.core.domain_types import Entity, EntityId
from optimistic.core.errors import ErrorSeverity


PerformCreate = Callable[[Entity], Awaitable[Entity]]
PerformUpdate = Callable[[Entity], Awaitable[Entity]]
PerformDelete = Callable[[EntityId], Awaitable[Any]]


class CredentialStore(Protocol):
    """Holds the session credential; torn down once per unauthorized response."""
    def get_token(self) -> str | None: ...
    def clear(self) -> None: ...
    def redirect_to_login(self) -> None: ...


class NotifierAction(Protocol):
    """Optional action attached to a notification (e.g. an Undo button)."""
    label: str

    def __call__(self) -> Any: ...


class Notifier(Protocol):
    """Receives terminal success/failure signals for display."""
    def notify(
        self,
        message: str,
        severity: ErrorSeverity,
        action: NotifierAction | None = None,
    ) -> None: ...


class ReversibleCommand(Protocol):
    """Undo-ledger entry body: invert() undoes, apply() redoes when supported."""
    @property
    def can_redo(self) -> bool: ...

    async def invert(self) -> None: ...
    async def apply(self) -> None: ...
