"""
SQLAlchemy mixins for soft delete functionality.

These mixins give SQLAlchemy models the lifecycle columns and delegate the
state machine to :mod:`lifecycle_toolkit.soft_delete.lifecycle`.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Type

from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import String, Uuid, event, inspect
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, validates

from . import lifecycle
from .exceptions import SoftDeleteValidationError
from .models import EntityStatus, LifecycleSnapshot


class LifecycleMixin:
    """
    Mixin to add soft delete lifecycle columns to SQLAlchemy models.

    Provides:
    - A UUID primary key that cannot be reassigned
    - Status and deletion stamps (status, deleted_at, deleted_by)
    - Creation and update audit fields
    - A CHECK constraint tying status to the deletion stamps

    Usage:
        class Document(Base, LifecycleMixin):
            __tablename__ = 'documents'
            title = mapped_column(String(200))

    Extra table arguments go in ``__lifecycle_table_args__``.
    """

    __lifecycle_table_args__: Tuple[Any, ...] = ()

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    status: Mapped[EntityStatus] = mapped_column(
        SAEnum(EntityStatus, native_enum=False, length=20),
        default=EntityStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lifecycle.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=lifecycle.utcnow, nullable=False
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    @declared_attr.directive
    def __table_args__(cls: Any) -> Tuple[Any, ...]:
        """Add the status/deletion consistency constraint."""
        table_name = getattr(cls, "__tablename__", cls.__name__.lower())
        constraint = CheckConstraint(
            "(status = 'ACTIVE' AND deleted_at IS NULL AND deleted_by IS NULL) OR "
            "(status = 'INACTIVE' AND deleted_at IS NOT NULL "
            "AND deleted_by IS NOT NULL)",
            name=f"ck_{table_name}_lifecycle_consistency",
        )
        return tuple(cls.__lifecycle_table_args__) + (constraint,)

    @validates("id", "created_at")
    def _validate_write_once(self, key: str, value: Any) -> Any:
        state = inspect(self)
        if key == "id" and state.identity:
            existing: Any = state.identity[0]
        else:
            existing = self.__dict__.get(key)

        # persisted rows always carry created_at, even when it is expired
        overwrites_stored = (
            key == "created_at" and existing is None and state.persistent
        )
        if overwrites_stored or (existing is not None and value != existing):
            raise SoftDeleteValidationError(
                f"{key} cannot be changed once assigned",
                entity_id=state.identity[0] if state.identity else None,
            )
        return value

    def deactivate(self, actor: Any, at: Optional[datetime] = None) -> bool:
        """Mark this record INACTIVE in memory. See :func:`lifecycle.deactivate`."""
        return lifecycle.deactivate(self, actor, at)

    def reactivate(self, actor: Any, at: Optional[datetime] = None) -> bool:
        """Mark this record ACTIVE in memory. See :func:`lifecycle.reactivate`."""
        return lifecycle.reactivate(self, actor, at)

    def is_deleted(self) -> bool:
        return lifecycle.is_deleted(self)

    def is_active(self) -> bool:
        return lifecycle.is_active(self)

    def stamp_created(self, actor: Any, at: Optional[datetime] = None) -> None:
        lifecycle.stamp_created(self, actor, at)

    def stamp_updated(self, actor: Any, at: Optional[datetime] = None) -> None:
        lifecycle.stamp_updated(self, actor, at)

    def to_snapshot(self) -> LifecycleSnapshot:
        """Return the lifecycle fields as a validated snapshot."""
        return LifecycleSnapshot(
            id=str(self.id),
            entity_type=self.__class__.__name__,
            status=self.status or EntityStatus.ACTIVE,
            deleted_at=self.deleted_at,
            deleted_by=self.deleted_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
            created_by=self.created_by,
            updated_by=self.updated_by,
        )

    def to_dict(self, include_lifecycle_fields: bool = True) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Args:
            include_lifecycle_fields: Whether to include lifecycle and audit fields

        Returns:
            Dictionary representation of the model
        """
        result: Dict[str, Any] = {}

        table = getattr(self, "__table__", None)
        if table is None:
            return result

        for column in table.columns:
            value = getattr(self, column.key, None)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, EntityStatus):
                value = value.value
            elif isinstance(value, uuid.UUID):
                value = str(value)
            result[column.key] = value

        if not include_lifecycle_fields:
            for field in LIFECYCLE_FIELDS:
                result.pop(field, None)

        return result


LIFECYCLE_FIELDS = (
    "status",
    "deleted_at",
    "deleted_by",
    "created_at",
    "updated_at",
    "created_by",
    "updated_by",
)


def prevent_hard_delete(mapper: Any, connection: Any, target: Any) -> None:
    """
    Prevent hard deletes on models with LifecycleMixin.

    This function should be connected to SQLAlchemy's before_delete event.
    """
    if isinstance(target, LifecycleMixin):
        raise RuntimeError(
            f"Hard delete attempted on {target.__class__.__name__}. "
            "Use a soft delete instead."
        )


def register_soft_delete_listeners(base_class: Type[Any]) -> None:
    """
    Register SQLAlchemy event listeners for soft delete functionality.

    Args:
        base_class: The declarative base class
    """
    for mapper in base_class.registry.mappers:
        if issubclass(mapper.class_, LifecycleMixin) and not event.contains(
            mapper.class_, "before_delete", prevent_hard_delete
        ):
            event.listen(mapper.class_, "before_delete", prevent_hard_delete)
