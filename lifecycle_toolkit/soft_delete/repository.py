"""
Data access layer for soft-deletable records.

Every read exposed here is generated from one of three select templates
(active only, deleted only, including deleted), so no caller can obtain
inactive rows without asking for them by name. Every status transition is a
single conditional ``UPDATE`` guarded on the expected current status; a
result of 0 rows means "missing", "already in the target state" or "lost a
race", and it is up to the caller to tell those apart.
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import (
    Any,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Type,
    TypeVar,
)

from sqlalchemy import Select, case, func, inspect, select, update
from sqlalchemy.orm import Session

from .exceptions import SoftDeleteValidationError
from .lifecycle import normalize_actor
from .mixins import LifecycleMixin
from .models import EntityStatus

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=LifecycleMixin)


class Visibility(str, Enum):
    """Which lifecycle states a read may return."""

    ACTIVE = "active"
    DELETED = "deleted"
    ALL = "all"


def coerce_id(value: Any) -> uuid.UUID:
    """
    Convert an entity identifier to a UUID.

    Raises:
        SoftDeleteValidationError: If the value is absent or not a UUID
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise SoftDeleteValidationError("Entity ID is required")
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        raise SoftDeleteValidationError(
            "Entity ID must be a valid UUID", entity_id=value
        ) from None


def coerce_ids(values: Iterable[Any]) -> List[uuid.UUID]:
    """Convert identifiers to UUIDs, dropping duplicates and keeping order."""
    return list(dict.fromkeys(coerce_id(value) for value in values))


class SoftDeleteStore(Protocol[T]):
    """Operations a storage layer must provide to back the lifecycle service."""

    @property
    def entity_type(self) -> str:
        ...

    def find_active(self, entity_id: uuid.UUID) -> Optional[T]:
        ...

    def find_all_active(self) -> List[T]:
        ...

    def find_deleted(self, entity_id: uuid.UUID) -> Optional[T]:
        ...

    def find_all_deleted(self) -> List[T]:
        ...

    def find_including_deleted(self, entity_id: uuid.UUID) -> Optional[T]:
        ...

    def find_all_including_deleted(self) -> List[T]:
        ...

    def exists_active(self, entity_id: uuid.UUID) -> bool:
        ...

    def deactivate_by_id(
        self, entity_id: uuid.UUID, timestamp: datetime, actor: Any
    ) -> int:
        ...

    def reactivate_by_id(
        self, entity_id: uuid.UUID, timestamp: datetime, actor: Any
    ) -> int:
        ...

    def deactivate_by_ids(
        self, entity_ids: Sequence[uuid.UUID], timestamp: datetime, actor: Any
    ) -> int:
        ...

    def reactivate_by_ids(
        self, entity_ids: Sequence[uuid.UUID], timestamp: datetime, actor: Any
    ) -> int:
        ...

    def count_active(self) -> int:
        ...

    def count_deleted(self) -> int:
        ...

    def find_deleted_by_actor(self, actor: Any) -> List[T]:
        ...

    def find_deleted_between(self, start: datetime, end: datetime) -> List[T]:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


class SoftDeleteRepository(Generic[T]):
    """
    SQLAlchemy implementation of :class:`SoftDeleteStore` for one model.

    Usage:
        repository = SoftDeleteRepository(session, Document)
        repository.deactivate_by_id(doc_id, utcnow(), "user-1")
        repository.commit()
    """

    def __init__(self, session: Session, model: Type[T]):
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy database session
            model: Mapped class using LifecycleMixin
        """
        if not (isinstance(model, type) and issubclass(model, LifecycleMixin)):
            raise TypeError(f"{model!r} does not use LifecycleMixin")
        self.session = session
        self.model = model

    @property
    def entity_type(self) -> str:
        return self.model.__name__

    # Templates

    def _criteria(self, visibility: Visibility) -> List[Any]:
        if visibility == Visibility.ACTIVE:
            return [self.model.status == EntityStatus.ACTIVE]
        if visibility == Visibility.DELETED:
            return [self.model.status == EntityStatus.INACTIVE]
        return []

    def _select(
        self,
        visibility: Visibility,
        *criteria: Any,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Select[Any]:
        stmt = select(self.model).where(*self._criteria(visibility), *criteria)
        if order_by is None:
            order_by = (self.model.created_at, self.model.id)
        return stmt.order_by(*order_by)

    def _one(self, visibility: Visibility, entity_id: uuid.UUID) -> Optional[T]:
        stmt = self._select(visibility, self.model.id == entity_id)
        # refresh identity-map copies so status changes from other sessions show
        stmt = stmt.execution_options(populate_existing=True)
        return self.session.execute(stmt).scalars().first()

    def _all(
        self,
        visibility: Visibility,
        *criteria: Any,
        order_by: Optional[Sequence[Any]] = None,
    ) -> List[T]:
        stmt = self._select(visibility, *criteria, order_by=order_by)
        return list(self.session.execute(stmt).scalars().all())

    def _count(self, visibility: Visibility) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(*self._criteria(visibility))
        )
        return int(self.session.execute(stmt).scalar_one())

    def _transition(
        self,
        target: Any,
        expected: EntityStatus,
        values: Dict[str, Any],
        timestamp: datetime,
    ) -> int:
        values["updated_at"] = case(
            (self.model.updated_at > timestamp, self.model.updated_at),
            else_=timestamp,
        )
        stmt = (
            update(self.model)
            .where(target, self.model.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return int(result.rowcount)  # type: ignore[attr-defined]

    def _expire(self, entity_ids: Iterable[uuid.UUID]) -> None:
        wanted = set(entity_ids)
        for obj in list(self.session.identity_map.values()):
            if not isinstance(obj, self.model):
                continue
            identity = inspect(obj).identity
            if identity and identity[0] in wanted:
                self.session.expire(obj)

    # Reads

    def find_active(self, entity_id: uuid.UUID) -> Optional[T]:
        return self._one(Visibility.ACTIVE, entity_id)

    def find_all_active(self) -> List[T]:
        return self._all(Visibility.ACTIVE)

    def find_deleted(self, entity_id: uuid.UUID) -> Optional[T]:
        return self._one(Visibility.DELETED, entity_id)

    def find_all_deleted(self) -> List[T]:
        return self._all(Visibility.DELETED)

    def find_including_deleted(self, entity_id: uuid.UUID) -> Optional[T]:
        """Find a record regardless of status. Reserved for audit and recovery."""
        return self._one(Visibility.ALL, entity_id)

    def find_all_including_deleted(self) -> List[T]:
        """Return every record regardless of status. Reserved for audit and recovery."""
        return self._all(Visibility.ALL)

    def exists_active(self, entity_id: uuid.UUID) -> bool:
        stmt = select(
            select(self.model.id)
            .where(*self._criteria(Visibility.ACTIVE), self.model.id == entity_id)
            .exists()
        )
        return bool(self.session.execute(stmt).scalar())

    def count_active(self) -> int:
        return self._count(Visibility.ACTIVE)

    def count_deleted(self) -> int:
        return self._count(Visibility.DELETED)

    def find_deleted_by_actor(self, actor: Any) -> List[T]:
        return self._all(
            Visibility.DELETED,
            self.model.deleted_by == normalize_actor(actor),
            order_by=(self.model.deleted_at.desc(), self.model.id),
        )

    def find_deleted_between(self, start: datetime, end: datetime) -> List[T]:
        """Return records deleted within ``[start, end]``, newest first."""
        return self._all(
            Visibility.DELETED,
            self.model.deleted_at.between(start, end),
            order_by=(self.model.deleted_at.desc(), self.model.id),
        )

    # Mutations

    def add(self, entity: T, actor: Any, at: Optional[datetime] = None) -> T:
        """Stamp a new record as created by ``actor`` and add it to the session."""
        entity.stamp_created(actor, at)
        self.session.add(entity)
        self.session.flush()
        return entity

    def deactivate_by_id(
        self, entity_id: uuid.UUID, timestamp: datetime, actor: Any
    ) -> int:
        """
        Transition one record ACTIVE -> INACTIVE if it is currently ACTIVE.

        Returns:
            1 if the record transitioned, 0 otherwise
        """
        actor_id = normalize_actor(actor)
        count = self._transition(
            self.model.id == entity_id,
            EntityStatus.ACTIVE,
            {
                "status": EntityStatus.INACTIVE,
                "deleted_at": timestamp,
                "deleted_by": actor_id,
                "updated_by": actor_id,
            },
            timestamp,
        )
        self._expire([entity_id])
        logger.debug(f"deactivate {self.entity_type} {entity_id}: {count} row(s)")
        return count

    def reactivate_by_id(
        self, entity_id: uuid.UUID, timestamp: datetime, actor: Any
    ) -> int:
        """
        Transition one record INACTIVE -> ACTIVE if it is currently INACTIVE.

        Returns:
            1 if the record transitioned, 0 otherwise
        """
        actor_id = normalize_actor(actor)
        count = self._transition(
            self.model.id == entity_id,
            EntityStatus.INACTIVE,
            {
                "status": EntityStatus.ACTIVE,
                "deleted_at": None,
                "deleted_by": None,
                "updated_by": actor_id,
            },
            timestamp,
        )
        self._expire([entity_id])
        logger.debug(f"reactivate {self.entity_type} {entity_id}: {count} row(s)")
        return count

    def deactivate_by_ids(
        self, entity_ids: Sequence[uuid.UUID], timestamp: datetime, actor: Any
    ) -> int:
        """Deactivate every ACTIVE record in the batch in one statement."""
        actor_id = normalize_actor(actor)
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return 0
        count = self._transition(
            self.model.id.in_(ids),
            EntityStatus.ACTIVE,
            {
                "status": EntityStatus.INACTIVE,
                "deleted_at": timestamp,
                "deleted_by": actor_id,
                "updated_by": actor_id,
            },
            timestamp,
        )
        self._expire(ids)
        logger.debug(
            f"deactivate {self.entity_type} batch of {len(ids)}: {count} row(s)"
        )
        return count

    def reactivate_by_ids(
        self, entity_ids: Sequence[uuid.UUID], timestamp: datetime, actor: Any
    ) -> int:
        """Reactivate every INACTIVE record in the batch in one statement."""
        actor_id = normalize_actor(actor)
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return 0
        count = self._transition(
            self.model.id.in_(ids),
            EntityStatus.INACTIVE,
            {
                "status": EntityStatus.ACTIVE,
                "deleted_at": None,
                "deleted_by": None,
                "updated_by": actor_id,
            },
            timestamp,
        )
        self._expire(ids)
        logger.debug(
            f"reactivate {self.entity_type} batch of {len(ids)}: {count} row(s)"
        )
        return count

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
