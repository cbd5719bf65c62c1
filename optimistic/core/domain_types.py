"""Domain Types — identifiers and enums shared across the optimistic layer.

Invariants:
    - ActionId and UndoId wrap str — never pass a bare entity id where an action id is expected
    - All valid states encoded as Enums — no raw string matching
    - ErrorKind is closed: every transport failure maps to exactly one member

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON (logs, notifier payloads) without custom encoders
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any, Hashable, NewType


# ─── Identity Types ──────────────────────────────────────────────

ActionId = NewType("ActionId", str)
UndoId = NewType("UndoId", str)

EntityId = Hashable
Entity = Any


# ─── Enums ───────────────────────────────────────────────────────

class MutationKind(str, Enum):
    """Kind of speculative edit tracked by a PendingAction."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ActionStatus(str, Enum):
    """PendingAction lifecycle — PENDING moves to exactly one terminal state."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ActionStatus.PENDING


class ErrorKind(str, Enum):
    """Fixed taxonomy for transport failures."""
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    VALIDATION = "validation"
    NETWORK = "network"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.SERVICE_UNAVAILABLE})


def entity_id(entity: Entity) -> EntityId:
    """Read the identity field from a mapping or an object."""
    if isinstance(entity, Mapping):
        return entity.get("id")
    return getattr(entity, "id", None)
