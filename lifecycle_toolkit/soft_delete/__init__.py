"""
Soft Delete Module - lifecycle and visibility contract for persisted records.

Provides the lifecycle state machine, SQLAlchemy mixin, data access
repository and service for soft-deleting and reactivating records.
"""

from .exceptions import (
    AlreadyDeletedException,
    CascadingConstraintViolation,
    ConcurrentModificationException,
    EntityNotFoundException,
    ErrorKind,
    InsufficientPermissionsException,
    NotDeletedException,
    SoftDeleteError,
    SoftDeleteValidationError,
)
from .lifecycle import HasLifecycle, LifecycleRecord, LifecycleState, utcnow
from .mixins import LifecycleMixin, register_soft_delete_listeners
from .models import DeletionReport, EntityStatus, LifecycleSnapshot
from .reporting import TableAuditor
from .repository import SoftDeleteRepository, SoftDeleteStore, Visibility
from .services import SoftDeleteService

__all__ = [
    # Lifecycle
    "EntityStatus",
    "HasLifecycle",
    "LifecycleRecord",
    "LifecycleState",
    "utcnow",
    # Mixins
    "LifecycleMixin",
    "register_soft_delete_listeners",
    # Data access
    "SoftDeleteStore",
    "SoftDeleteRepository",
    "Visibility",
    # Services
    "SoftDeleteService",
    "TableAuditor",
    # Models
    "LifecycleSnapshot",
    "DeletionReport",
    # Exceptions
    "ErrorKind",
    "SoftDeleteError",
    "EntityNotFoundException",
    "AlreadyDeletedException",
    "NotDeletedException",
    "InsufficientPermissionsException",
    "CascadingConstraintViolation",
    "SoftDeleteValidationError",
    "ConcurrentModificationException",
]
