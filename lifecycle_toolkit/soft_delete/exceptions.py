"""Exceptions for soft delete operations."""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Closed set of lifecycle failure kinds."""

    ENTITY_NOT_FOUND = "entity_not_found"
    ENTITY_ALREADY_DELETED = "entity_already_deleted"
    ENTITY_NOT_DELETED = "entity_not_deleted"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    CASCADING_CONSTRAINT_VIOLATION = "cascading_constraint_violation"
    VALIDATION_ERROR = "validation_error"
    CONCURRENT_MODIFICATION = "concurrent_modification"


class SoftDeleteError(Exception):
    """Base exception for soft delete operations."""

    kind: ErrorKind

    def __init__(self, message: str, entity_id: Optional[Any] = None):
        self.entity_id = entity_id
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "entity_id": None if self.entity_id is None else str(self.entity_id),
            "message": self.message,
        }


class EntityNotFoundException(SoftDeleteError):
    """Raised when no record, active or inactive, exists for an id."""

    kind = ErrorKind.ENTITY_NOT_FOUND

    def __init__(self, entity_id: Any):
        super().__init__(f"Entity with ID {entity_id} not found", entity_id=entity_id)


class AlreadyDeletedException(SoftDeleteError):
    """Raised when attempting to delete an already deleted entity."""

    kind = ErrorKind.ENTITY_ALREADY_DELETED

    def __init__(self, entity_id: Any):
        super().__init__(
            f"Entity with ID {entity_id} is already deleted",
            entity_id=entity_id,
        )


class NotDeletedException(SoftDeleteError):
    """Raised when attempting to reactivate a non-deleted entity."""

    kind = ErrorKind.ENTITY_NOT_DELETED

    def __init__(self, entity_id: Any):
        super().__init__(
            f"Entity with ID {entity_id} is not deleted and cannot be reactivated",
            entity_id=entity_id,
        )


class InsufficientPermissionsException(SoftDeleteError):
    """Raised when an actor is not allowed to perform a transition or query."""

    kind = ErrorKind.INSUFFICIENT_PERMISSIONS

    def __init__(self, entity_id: Any, user_id: Any, action: str = "perform operation"):
        self.user_id = user_id
        self.action = action
        if entity_id is not None:
            target = f"on entity {entity_id}"
        else:
            target = "on deleted records"
        super().__init__(
            f"User {user_id} lacks permission to {action} {target}",
            entity_id=entity_id,
        )


class CascadingConstraintViolation(SoftDeleteError):
    """Raised when dependents still active prevent a deactivation."""

    kind = ErrorKind.CASCADING_CONSTRAINT_VIOLATION

    def __init__(self, entity_id: Any, details: str):
        self.details = details
        super().__init__(
            f"Cannot delete entity {entity_id} due to cascading constraints: {details}",
            entity_id=entity_id,
        )


class SoftDeleteValidationError(SoftDeleteError):
    """Raised when arguments fail precondition checks."""

    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, entity_id: Optional[Any] = None):
        self.reason = message
        super().__init__(
            f"Validation failed for entity {entity_id}: {message}",
            entity_id=entity_id,
        )


class ConcurrentModificationException(SoftDeleteError):
    """Raised when a record changed between a read and its conditional write."""

    kind = ErrorKind.CONCURRENT_MODIFICATION

    def __init__(self, entity_id: Any):
        super().__init__(
            f"Entity {entity_id} was modified by another process. "
            "Please retry the operation",
            entity_id=entity_id,
        )
