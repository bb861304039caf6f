"""
Service layer for soft delete operations.

Applies validation, authorization, dependency checks and audit stamping
around the conditional updates of a :class:`SoftDeleteStore`. This is the
only component application code is expected to call.

Two styles are offered for single-record transitions:

* ``soft_delete`` / ``reactivate`` return a boolean. A record that is
  missing or already in the target state yields ``False``.
* ``soft_delete_strict`` / ``reactivate_strict`` raise
  :class:`EntityNotFoundException`, :class:`AlreadyDeletedException` or
  :class:`NotDeletedException` instead, and
  :class:`ConcurrentModificationException` when another writer wins the
  race between the pre-read and the conditional write.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..access_control import AllowAllPolicy, PermissionPolicy
from ..config import BulkMode, LifecycleConfig, get_config
from .exceptions import (
    AlreadyDeletedException,
    CascadingConstraintViolation,
    ConcurrentModificationException,
    EntityNotFoundException,
    InsufficientPermissionsException,
    NotDeletedException,
    SoftDeleteError,
    SoftDeleteValidationError,
)
from .lifecycle import normalize_actor, utcnow
from .models import DeletionReport, EntityStatus
from .repository import SoftDeleteStore, T, coerce_id, coerce_ids

logger = logging.getLogger(__name__)

DependencyCheck = Callable[[uuid.UUID], int]


class SoftDeleteService(Generic[T]):
    """
    Lifecycle service for one record type.

    Every mutation runs these steps in order, and stops at the first failure:
    validation, authorization, cascading constraints, the conditional write,
    commit, audit.
    """

    def __init__(
        self,
        repository: SoftDeleteStore[T],
        permission_policy: Optional[PermissionPolicy] = None,
        audit_logger: Optional[Any] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the soft delete service.

        Args:
            repository: Data access object for the record type
            permission_policy: Authorization predicates, defaults to allow all
            audit_logger: Optional object with a ``log_activity(**kwargs)`` method
            config: Configuration, defaults to the global configuration
            clock: Source of transition timestamps
        """
        self.repository = repository
        self.permission_policy: PermissionPolicy = (
            permission_policy if permission_policy is not None else AllowAllPolicy()
        )
        self.audit_logger = audit_logger
        self.config = config if config is not None else get_config()
        self.clock = clock
        self._dependencies: Dict[str, DependencyCheck] = {}

    @property
    def entity_type(self) -> str:
        return self.repository.entity_type

    # Authorization predicates

    def can_soft_delete(self, entity_id: Any, user_id: Any) -> bool:
        return bool(self.permission_policy.can_soft_delete(entity_id, user_id))

    def can_reactivate(self, entity_id: Any, user_id: Any) -> bool:
        return bool(self.permission_policy.can_reactivate(entity_id, user_id))

    def can_view_deleted(self, user_id: Any) -> bool:
        return bool(self.permission_policy.can_view_deleted(user_id))

    # Cascading constraints

    def register_dependency(self, name: str, check: DependencyCheck) -> None:
        """
        Register a dependent record type that blocks deactivation.

        Args:
            name: Label used in error messages, e.g. "attachments"
            check: Returns how many active dependents an entity id still has
        """
        self._dependencies[name] = check

    def _check_dependencies(self, entity_id: uuid.UUID) -> None:
        if not self._dependencies or not self.repository.exists_active(entity_id):
            return

        blockers = []
        for name, check in self._dependencies.items():
            active = check(entity_id)
            if active:
                blockers.append(f"{active} active {name}")

        if blockers:
            logger.warning(
                f"Refusing to delete {self.entity_type} {entity_id}: "
                f"{', '.join(blockers)}"
            )
            raise CascadingConstraintViolation(entity_id, ", ".join(blockers))

    # Helpers

    def _require_actor(self, actor: Any, entity_id: Optional[Any] = None) -> str:
        try:
            return normalize_actor(actor)
        except SoftDeleteValidationError:
            raise SoftDeleteValidationError(
                "Actor ID is required", entity_id=entity_id
            ) from None

    def _require_ids(self, entity_ids: Optional[Iterable[Any]]) -> List[uuid.UUID]:
        if entity_ids is None or isinstance(entity_ids, (str, bytes)):
            raise SoftDeleteValidationError("A list of entity IDs is required")

        try:
            ids = coerce_ids(entity_ids)
        except TypeError:
            raise SoftDeleteValidationError(
                "A list of entity IDs is required"
            ) from None
        if not ids:
            raise SoftDeleteValidationError("At least one entity ID is required")
        if len(ids) > self.config.max_bulk_size:
            raise SoftDeleteValidationError(
                f"Batch of {len(ids)} exceeds the maximum of "
                f"{self.config.max_bulk_size} IDs"
            )
        return ids

    def _authorize(
        self,
        check: Callable[[Any, Any], bool],
        entity_id: uuid.UUID,
        actor: str,
        action: str,
    ) -> None:
        if not check(entity_id, actor):
            logger.warning(f"User {actor} denied {action} on {entity_id}")
            raise InsufficientPermissionsException(entity_id, actor, action)

    def _authorize_view(self, requested_by: Any) -> str:
        actor = self._require_actor(requested_by)
        if not self.can_view_deleted(actor):
            logger.warning(
                f"User {actor} denied access to deleted {self.entity_type} records"
            )
            raise InsufficientPermissionsException(None, actor, "view deleted records")
        return actor

    def _write(self, write: Callable[[], int], expected: Optional[int] = None) -> int:
        """Run one conditional write as a unit of work.

        When ``expected`` is given and fewer rows change, the work is rolled
        back instead of committed.
        """
        try:
            count = write()
            if expected is not None and count < expected:
                self.repository.rollback()
            else:
                self.repository.commit()
        except SQLAlchemyError as e:
            self.repository.rollback()
            logger.error(f"Lifecycle update on {self.entity_type} failed: {e}")
            raise
        return count

    def _bulk_failure(
        self, entity_ids: List[uuid.UUID], target: EntityStatus
    ) -> SoftDeleteError:
        for entity_id in entity_ids:
            entity = self.repository.find_including_deleted(entity_id)
            if entity is None:
                return EntityNotFoundException(entity_id)
            if EntityStatus(entity.status) == target:
                if target == EntityStatus.INACTIVE:
                    return AlreadyDeletedException(entity_id)
                return NotDeletedException(entity_id)
        return ConcurrentModificationException(entity_ids[0])

    def _audit(
        self,
        activity_type: str,
        actor: str,
        entity_id: Optional[uuid.UUID],
        details: Dict[str, Any],
    ) -> None:
        if not self.config.audit_enabled or self.audit_logger is None:
            return

        # the transition is already committed at this point
        try:
            self.audit_logger.log_activity(
                user_id=actor,
                activity_type=activity_type,
                entity_type=self.entity_type,
                entity_id=None if entity_id is None else str(entity_id),
                details={"application": self.config.application_name, **details},
            )
        except Exception as e:
            logger.error(
                f"Failed to record {activity_type} audit event for "
                f"{self.entity_type} {entity_id}: {e}"
            )

    # Single-record transitions, boolean style

    def soft_delete(self, entity_id: Any, actor_id: Any) -> bool:
        """
        Soft delete an entity by ID.

        Args:
            entity_id: Entity ID to soft delete
            actor_id: ID of user performing the deletion

        Returns:
            True if the entity transitioned, False if it was not found or
            already deleted

        Raises:
            SoftDeleteValidationError: If an argument is missing or malformed
            InsufficientPermissionsException: If the actor may not delete it
            CascadingConstraintViolation: If active dependents remain
        """
        eid = coerce_id(entity_id)
        actor = self._require_actor(actor_id, eid)
        self._authorize(self.can_soft_delete, eid, actor, "soft delete")
        self._check_dependencies(eid)

        timestamp = self.clock()
        count = self._write(
            lambda: self.repository.deactivate_by_id(eid, timestamp, actor)
        )
        if not count:
            logger.warning(
                f"{self.entity_type} {eid} not soft deleted: "
                "not found or already deleted"
            )
            return False

        logger.info(f"{self.entity_type} {eid} soft deleted by {actor}")
        self._audit("SOFT_DELETE", actor, eid, {"deleted_at": timestamp.isoformat()})
        return True

    def reactivate(self, entity_id: Any, actor_id: Any) -> bool:
        """
        Reactivate a soft-deleted entity by ID.

        Returns:
            True if the entity transitioned, False if it was not found or
            not deleted

        Raises:
            SoftDeleteValidationError: If an argument is missing or malformed
            InsufficientPermissionsException: If the actor may not reactivate it
        """
        eid = coerce_id(entity_id)
        actor = self._require_actor(actor_id, eid)
        self._authorize(self.can_reactivate, eid, actor, "reactivate")

        timestamp = self.clock()
        count = self._write(
            lambda: self.repository.reactivate_by_id(eid, timestamp, actor)
        )
        if not count:
            logger.warning(
                f"{self.entity_type} {eid} not reactivated: not found or not deleted"
            )
            return False

        logger.info(f"{self.entity_type} {eid} reactivated by {actor}")
        self._audit("REACTIVATE", actor, eid, {"reactivated_at": timestamp.isoformat()})
        return True

    # Single-record transitions, strict style

    def soft_delete_strict(self, entity_id: Any, actor_id: Any) -> T:
        """
        Soft delete an entity, raising a typed error for every no-op.

        Returns:
            The deactivated entity

        Raises:
            EntityNotFoundException: No record has this ID
            AlreadyDeletedException: The record is already inactive
            ConcurrentModificationException: Another writer changed the
                record between the read and the write
        """
        eid = coerce_id(entity_id)
        actor = self._require_actor(actor_id, eid)
        self._authorize(self.can_soft_delete, eid, actor, "soft delete")

        entity = self.repository.find_including_deleted(eid)
        if entity is None:
            raise EntityNotFoundException(eid)
        if entity.is_deleted():
            raise AlreadyDeletedException(eid)
        self._check_dependencies(eid)

        timestamp = self.clock()
        count = self._write(
            lambda: self.repository.deactivate_by_id(eid, timestamp, actor)
        )
        if not count:
            logger.warning(f"Lost race deleting {self.entity_type} {eid}")
            raise ConcurrentModificationException(eid)

        logger.info(f"{self.entity_type} {eid} soft deleted by {actor}")
        self._audit("SOFT_DELETE", actor, eid, {"deleted_at": timestamp.isoformat()})
        return self._reload(eid)

    def reactivate_strict(self, entity_id: Any, actor_id: Any) -> T:
        """
        Reactivate an entity, raising a typed error for every no-op.

        Raises:
            EntityNotFoundException: No record has this ID
            NotDeletedException: The record is already active
            ConcurrentModificationException: Another writer changed the
                record between the read and the write
        """
        eid = coerce_id(entity_id)
        actor = self._require_actor(actor_id, eid)
        self._authorize(self.can_reactivate, eid, actor, "reactivate")

        entity = self.repository.find_including_deleted(eid)
        if entity is None:
            raise EntityNotFoundException(eid)
        if entity.is_active():
            raise NotDeletedException(eid)

        timestamp = self.clock()
        count = self._write(
            lambda: self.repository.reactivate_by_id(eid, timestamp, actor)
        )
        if not count:
            logger.warning(f"Lost race reactivating {self.entity_type} {eid}")
            raise ConcurrentModificationException(eid)

        logger.info(f"{self.entity_type} {eid} reactivated by {actor}")
        self._audit("REACTIVATE", actor, eid, {"reactivated_at": timestamp.isoformat()})
        return self._reload(eid)

    def _reload(self, entity_id: uuid.UUID) -> T:
        entity = self.repository.find_including_deleted(entity_id)
        if entity is None:
            raise EntityNotFoundException(entity_id)
        return entity

    # Bulk transitions

    def bulk_soft_delete(self, entity_ids: Iterable[Any], actor_id: Any) -> int:
        """
        Soft delete a batch of entities.

        Permissions are checked for every ID before anything is written; one
        denial aborts the whole call. IDs blocked by active dependents are
        left out of a partial batch and abort an all-or-nothing batch.

        Returns:
            Number of entities that transitioned to INACTIVE
        """
        ids = self._require_ids(entity_ids)
        actor = self._require_actor(actor_id)
        for eid in ids:
            self._authorize(self.can_soft_delete, eid, actor, "soft delete")

        all_or_nothing = self.config.bulk_mode == BulkMode.ALL_OR_NOTHING
        writable = []
        for eid in ids:
            try:
                self._check_dependencies(eid)
            except CascadingConstraintViolation:
                if all_or_nothing:
                    raise
                continue
            writable.append(eid)

        timestamp = self.clock()
        count = self._write(
            lambda: self.repository.deactivate_by_ids(writable, timestamp, actor),
            expected=len(ids) if all_or_nothing else None,
        )
        if all_or_nothing and count < len(ids):
            raise self._bulk_failure(ids, EntityStatus.INACTIVE)

        logger.info(
            f"{count} of {len(ids)} {self.entity_type} records soft deleted by {actor}"
        )
        if count:
            self._audit(
                "BULK_SOFT_DELETE",
                actor,
                None,
                {"entity_ids": [str(i) for i in writable], "affected": count},
            )
        return count

    def bulk_reactivate(self, entity_ids: Iterable[Any], actor_id: Any) -> int:
        """
        Reactivate a batch of entities.

        Returns:
            Number of entities that transitioned to ACTIVE
        """
        ids = self._require_ids(entity_ids)
        actor = self._require_actor(actor_id)
        for eid in ids:
            self._authorize(self.can_reactivate, eid, actor, "reactivate")

        timestamp = self.clock()
        all_or_nothing = self.config.bulk_mode == BulkMode.ALL_OR_NOTHING
        count = self._write(
            lambda: self.repository.reactivate_by_ids(ids, timestamp, actor),
            expected=len(ids) if all_or_nothing else None,
        )
        if all_or_nothing and count < len(ids):
            raise self._bulk_failure(ids, EntityStatus.ACTIVE)

        logger.info(
            f"{count} of {len(ids)} {self.entity_type} records reactivated by {actor}"
        )
        if count:
            self._audit(
                "BULK_REACTIVATE",
                actor,
                None,
                {"entity_ids": [str(i) for i in ids], "affected": count},
            )
        return count

    # Reads

    def find_active_by_id(self, entity_id: Any) -> Optional[T]:
        return self.repository.find_active(coerce_id(entity_id))

    def find_all_active(self) -> List[T]:
        return self.repository.find_all_active()

    def find_all_deleted(self, requested_by: Any) -> List[T]:
        """
        Find all soft-deleted entities.

        Raises:
            InsufficientPermissionsException: If the requester may not view
                deleted records
        """
        self._authorize_view(requested_by)
        return self.repository.find_all_deleted()

    def exists_and_active(self, entity_id: Any) -> bool:
        return self.repository.exists_active(coerce_id(entity_id))

    def is_deleted(self, entity_id: Any) -> bool:
        """True if the entity exists and is soft deleted."""
        return self.repository.find_deleted(coerce_id(entity_id)) is not None

    def count_active(self) -> int:
        return self.repository.count_active()

    def count_deleted(self, requested_by: Any) -> int:
        self._authorize_view(requested_by)
        return self.repository.count_deleted()

    def find_deleted_by_actor(self, actor_id: Any, requested_by: Any) -> List[T]:
        """Find records soft deleted by ``actor_id``."""
        self._authorize_view(requested_by)
        return self.repository.find_deleted_by_actor(self._require_actor(actor_id))

    def find_deleted_between(
        self, start: datetime, end: datetime, requested_by: Any
    ) -> List[T]:
        """Find records soft deleted within ``[start, end]``, newest first."""
        self._authorize_view(requested_by)
        self._require_period(start, end)
        return self.repository.find_deleted_between(start, end)

    def generate_deletion_report(
        self, start: datetime, end: datetime, requested_by: Any
    ) -> DeletionReport:
        """
        Summarize deletions in a period by actor and by day.

        Only records that are still deleted are counted; a record reactivated
        since no longer carries its deletion stamps.
        """
        report = DeletionReport(
            start_date=start, end_date=end, entity_type=self.entity_type
        )
        for entity in self.find_deleted_between(start, end, requested_by):
            if entity.deleted_by is not None and entity.deleted_at is not None:
                report.add_deletion(entity.deleted_by, entity.deleted_at)
        return report

    @staticmethod
    def _require_period(start: Optional[datetime], end: Optional[datetime]) -> None:
        if start is None or end is None:
            raise SoftDeleteValidationError("Both start and end are required")
        if start > end:
            raise SoftDeleteValidationError("start must not be after end")
