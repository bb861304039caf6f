"""
Lifecycle state machine for soft-deletable records.

The functions in this module operate on any object exposing the lifecycle
attributes described by :class:`HasLifecycle`. They mutate fields in memory
only: no I/O and no authorization checks happen here.

States and transitions::

    ACTIVE --deactivate--> INACTIVE
    INACTIVE --reactivate--> ACTIVE
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, runtime_checkable

from .exceptions import SoftDeleteValidationError
from .models import EntityStatus


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the stored column type."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@runtime_checkable
class HasLifecycle(Protocol):
    """Capability interface: a record carrying lifecycle and audit fields."""

    status: EntityStatus
    deleted_at: Optional[datetime]
    deleted_by: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    created_by: Optional[str]
    updated_by: Optional[str]


@runtime_checkable
class LifecycleRecord(HasLifecycle, Protocol):
    """A lifecycle-carrying record that also has an identifier."""

    id: Any


@dataclass
class LifecycleState:
    """Lifecycle fields as a value that can be embedded in any record."""

    status: EntityStatus = EntityStatus.ACTIVE
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


def normalize_actor(actor: Any) -> str:
    """Return the stored form of an actor identifier."""
    if actor is None:
        raise SoftDeleteValidationError("Actor ID is required")
    value = str(actor).strip()
    if not value:
        raise SoftDeleteValidationError("Actor ID is required")
    return value


def _advance(record: HasLifecycle, at: datetime) -> None:
    # updated_at never moves backwards
    if record.updated_at is None or at > record.updated_at:
        record.updated_at = at


def _status(record: HasLifecycle) -> EntityStatus:
    # unflushed ORM records have no status until the column default applies
    return EntityStatus(record.status or EntityStatus.ACTIVE)


def is_active(record: HasLifecycle) -> bool:
    """Return True if the record is visible to normal reads."""
    return _status(record) == EntityStatus.ACTIVE


def is_deleted(record: HasLifecycle) -> bool:
    """Return True if the record has been soft deleted."""
    return _status(record) == EntityStatus.INACTIVE


def is_consistent(record: HasLifecycle) -> bool:
    """Check that status and deletion stamps agree."""
    if is_active(record):
        return record.deleted_at is None and record.deleted_by is None
    return record.deleted_at is not None and record.deleted_by is not None


def deactivate(record: HasLifecycle, actor: Any, at: Optional[datetime] = None) -> bool:
    """
    Transition a record from ACTIVE to INACTIVE.

    Args:
        record: Record to deactivate
        actor: Identifier of the user or process performing the deletion
        at: Deletion time, defaults to now

    Returns:
        True if the record changed, False if it was already inactive
    """
    actor_id = normalize_actor(actor)
    if is_deleted(record):
        return False

    at = at or utcnow()
    record.status = EntityStatus.INACTIVE
    record.deleted_at = at
    record.deleted_by = actor_id
    record.updated_by = actor_id
    _advance(record, at)
    return True


def reactivate(record: HasLifecycle, actor: Any, at: Optional[datetime] = None) -> bool:
    """
    Transition a record from INACTIVE back to ACTIVE.

    Clears the deletion stamps and records ``actor`` as the last updater.

    Returns:
        True if the record changed, False if it was already active
    """
    actor_id = normalize_actor(actor)
    if is_active(record):
        return False

    at = at or utcnow()
    record.status = EntityStatus.ACTIVE
    record.deleted_at = None
    record.deleted_by = None
    record.updated_by = actor_id
    _advance(record, at)
    return True


def stamp_created(
    record: HasLifecycle, actor: Any, at: Optional[datetime] = None
) -> None:
    """Set creation audit fields. A record can only be stamped once."""
    actor_id = normalize_actor(actor)
    if record.created_at is not None:
        raise SoftDeleteValidationError(
            "Creation audit fields are already set",
            entity_id=getattr(record, "id", None),
        )

    at = at or utcnow()
    record.status = EntityStatus.ACTIVE
    record.deleted_at = None
    record.deleted_by = None
    record.created_at = at
    record.created_by = actor_id
    record.updated_at = at
    record.updated_by = actor_id


def stamp_updated(
    record: HasLifecycle, actor: Any, at: Optional[datetime] = None
) -> None:
    """Set update audit fields."""
    record.updated_by = normalize_actor(actor)
    _advance(record, at or utcnow())
