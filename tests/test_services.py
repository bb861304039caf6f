"""
Tests for the soft delete service.

Covers the boolean and strict transition styles, bulk modes, permission
gating, cascading constraints, gated audit reads and the audit hook.
"""

import threading
import uuid
from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from lifecycle_toolkit.access_control import RoleBasedPolicy
from lifecycle_toolkit.config import BulkMode, LifecycleConfig, set_config
from lifecycle_toolkit.soft_delete import (
    AlreadyDeletedException,
    CascadingConstraintViolation,
    ConcurrentModificationException,
    EntityNotFoundException,
    EntityStatus,
    ErrorKind,
    InsufficientPermissionsException,
    NotDeletedException,
    SoftDeleteRepository,
    SoftDeleteService,
    SoftDeleteValidationError,
)

from sample_models import Attachment, Document


@pytest.fixture
def policy():
    """Role policy: alice and bob edit, carol audits, mallory has no roles."""
    policy = RoleBasedPolicy()
    policy.assign_role("alice", "editor")
    policy.assign_role("bob", "editor")
    policy.assign_role("carol", "auditor")
    return policy


@pytest.fixture
def guarded_service(repository, policy, config, clock, audit_logger):
    return SoftDeleteService(
        repository,
        permission_policy=policy,
        audit_logger=audit_logger,
        config=config,
        clock=clock,
    )


@pytest.fixture
def detached_repository():
    """Repository stand-in that records every call made to it."""
    repository = Mock(spec=SoftDeleteRepository)
    repository.entity_type = "Document"
    return repository


class TestSoftDelete:
    """Test the boolean transition style."""

    def test_soft_delete(self, service, make_document, clock):
        doc = make_document()

        assert service.soft_delete(doc.id, "alice") is True

        assert doc.status == EntityStatus.INACTIVE
        assert doc.deleted_by == "alice"
        assert doc.deleted_at == clock.current
        assert doc.updated_by == "alice"
        assert doc.updated_at == doc.deleted_at

    def test_second_soft_delete_is_noop(self, service, make_document):
        doc = make_document()
        service.soft_delete(doc.id, "alice")
        deleted_at = doc.deleted_at

        assert service.soft_delete(doc.id, "bob") is False

        assert doc.deleted_by == "alice"
        assert doc.deleted_at == deleted_at
        assert doc.updated_by == "alice"

    def test_missing_entity_returns_false(self, service):
        assert service.soft_delete(uuid.uuid4(), "alice") is False

    def test_string_id_accepted(self, service, make_document):
        doc = make_document()

        assert service.soft_delete(str(doc.id), "alice") is True

    def test_round_trip(self, service, make_document):
        doc = make_document()
        created_at, created_by = doc.created_at, doc.created_by

        service.soft_delete(doc.id, "alice")
        assert service.reactivate(doc.id, "bob") is True

        assert doc.status == EntityStatus.ACTIVE
        assert doc.deleted_at is None
        assert doc.deleted_by is None
        assert doc.updated_by == "bob"
        assert doc.created_at == created_at
        assert doc.created_by == created_by

    def test_reactivate_active_returns_false(self, service, make_document):
        doc = make_document()

        assert service.reactivate(doc.id, "bob") is False
        assert doc.updated_by == "creator"

    def test_default_reads_hide_deleted(self, service, make_document):
        kept = make_document("SOP-001")
        gone = make_document("SOP-002")
        service.soft_delete(gone.id, "alice")

        assert service.find_all_active() == [kept]
        assert service.find_active_by_id(gone.id) is None
        assert service.exists_and_active(gone.id) is False
        assert service.is_deleted(gone.id) is True
        assert service.is_deleted(kept.id) is False
        assert service.count_active() == 1

    def test_coupling_after_each_call(self, service, make_document):
        doc = make_document()
        for actor in ["alice", "bob", "carol", "dave"]:
            if doc.is_active():
                service.soft_delete(doc.id, actor)
            else:
                service.reactivate(doc.id, actor)
            assert doc.to_snapshot().status in ("ACTIVE", "INACTIVE")
            assert doc.is_deleted() == (doc.deleted_at is not None)
            assert doc.is_deleted() == (doc.deleted_by is not None)

    def test_database_error_rolls_back(self, detached_repository, config):
        detached_repository.deactivate_by_id.side_effect = OperationalError(
            "UPDATE documents", {}, Exception("disk I/O error")
        )
        service = SoftDeleteService(detached_repository, config=config)

        with pytest.raises(OperationalError):
            service.soft_delete(uuid.uuid4(), "alice")

        detached_repository.rollback.assert_called_once()
        detached_repository.commit.assert_not_called()

    def test_uses_global_config_by_default(self, repository):
        set_config(LifecycleConfig(environment="test", max_bulk_size=1))
        service = SoftDeleteService(repository)

        with pytest.raises(SoftDeleteValidationError):
            service.bulk_soft_delete([uuid.uuid4(), uuid.uuid4()], "alice")


@pytest.mark.concurrency
class TestConcurrentSoftDelete:
    def test_single_winner(self, file_engine):
        with Session(file_engine) as session:
            repository = SoftDeleteRepository(session, Document)
            doc_id = repository.add(Document(title="SOP-001"), "creator").id
            repository.commit()

        actors = [f"user-{i}" for i in range(4)]
        barrier = threading.Barrier(len(actors))
        results = {}
        errors = []

        def attempt(actor):
            try:
                with Session(file_engine) as session:
                    service = SoftDeleteService(
                        SoftDeleteRepository(session, Document),
                        config=LifecycleConfig(environment="test"),
                    )
                    barrier.wait()
                    results[actor] = service.soft_delete(doc_id, actor)
            except Exception as e:  # surfaced by the assertions below
                errors.append(e)

        threads = [threading.Thread(target=attempt, args=(a,)) for a in actors]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        winners = [actor for actor, won in results.items() if won]
        assert len(winners) == 1

        with Session(file_engine) as session:
            doc = session.get(Document, doc_id)
            assert doc.status == EntityStatus.INACTIVE
            assert doc.deleted_by == winners[0]


class TestStrictVariants:
    def test_soft_delete_strict(self, service, make_document):
        doc = make_document()

        result = service.soft_delete_strict(doc.id, "alice")

        assert result is doc
        assert result.is_deleted()

    def test_soft_delete_strict_already_deleted(self, service, make_document):
        doc = make_document()
        service.soft_delete(doc.id, "alice")

        with pytest.raises(AlreadyDeletedException) as exc:
            service.soft_delete_strict(doc.id, "bob")

        assert exc.value.entity_id == doc.id
        assert exc.value.kind == ErrorKind.ENTITY_ALREADY_DELETED
        assert doc.deleted_by == "alice"

    def test_strict_missing_entity(self, service):
        missing = uuid.uuid4()

        with pytest.raises(EntityNotFoundException) as exc:
            service.soft_delete_strict(missing, "alice")
        assert str(missing) in str(exc.value)

        with pytest.raises(EntityNotFoundException):
            service.reactivate_strict(missing, "alice")

    def test_reactivate_strict(self, service, make_document):
        doc = make_document()
        service.soft_delete(doc.id, "alice")

        result = service.reactivate_strict(doc.id, "bob")

        assert result.is_active()
        assert result.updated_by == "bob"

    def test_reactivate_strict_not_deleted(self, service, make_document):
        doc = make_document()

        with pytest.raises(NotDeletedException) as exc:
            service.reactivate_strict(doc.id, "bob")

        assert "is not deleted and cannot be reactivated" in str(exc.value)

    def test_lost_race_reported(self, service, repository, make_document):
        doc = make_document()

        with patch.object(repository, "deactivate_by_id", return_value=0):
            with pytest.raises(ConcurrentModificationException) as exc:
                service.soft_delete_strict(doc.id, "alice")

        assert exc.value.kind == ErrorKind.CONCURRENT_MODIFICATION
        assert "modified by another process" in str(exc.value)

    def test_lost_reactivation_race_reported(self, service, repository, make_document):
        doc = make_document()
        service.soft_delete(doc.id, "alice")

        with patch.object(repository, "reactivate_by_id", return_value=0):
            with pytest.raises(ConcurrentModificationException):
                service.reactivate_strict(doc.id, "bob")


class TestBulkOperations:
    def test_partial_batch(self, service, make_document):
        active = make_document("SOP-001")
        inactive = make_document("SOP-002")
        service.soft_delete(inactive.id, "alice")

        count = service.bulk_soft_delete(
            [active.id, inactive.id, uuid.uuid4()], "bob"
        )

        assert count == 1
        assert active.deleted_by == "bob"
        assert inactive.deleted_by == "alice"

    def test_bulk_reactivate(self, service, make_document):
        docs = [make_document(f"SOP-{i}") for i in range(3)]
        service.bulk_soft_delete([d.id for d in docs], "alice")

        assert service.bulk_reactivate([d.id for d in docs[:2]], "bob") == 2
        assert service.count_active() == 2

    def test_duplicates_counted_once(self, service, make_document):
        doc = make_document()

        assert service.bulk_soft_delete([doc.id, str(doc.id)], "alice") == 1

    def test_all_or_nothing_rolls_back(
        self, repository, clock, audit_logger, make_document
    ):
        config = LifecycleConfig(environment="test", bulk_mode=BulkMode.ALL_OR_NOTHING)
        service = SoftDeleteService(
            repository, audit_logger=audit_logger, config=config, clock=clock
        )
        active = make_document("SOP-001")
        inactive = make_document("SOP-002")
        service.soft_delete(inactive.id, "alice")
        audit_logger.reset_mock()

        with pytest.raises(AlreadyDeletedException) as exc:
            service.bulk_soft_delete([active.id, inactive.id], "bob")

        assert exc.value.entity_id == inactive.id
        assert active.is_active()
        audit_logger.log_activity.assert_not_called()

    def test_all_or_nothing_missing_id(self, repository, clock, make_document):
        config = LifecycleConfig(environment="test", bulk_mode="all_or_nothing")
        service = SoftDeleteService(repository, config=config, clock=clock)
        doc = make_document()
        missing = uuid.uuid4()

        with pytest.raises(EntityNotFoundException) as exc:
            service.bulk_soft_delete([doc.id, missing], "bob")

        assert exc.value.entity_id == missing
        assert doc.is_active()

    def test_all_or_nothing_reactivate(self, repository, clock, make_document):
        config = LifecycleConfig(environment="test", bulk_mode="all_or_nothing")
        service = SoftDeleteService(repository, config=config, clock=clock)
        deleted = make_document("SOP-001")
        active = make_document("SOP-002")
        service.soft_delete(deleted.id, "alice")

        with pytest.raises(NotDeletedException):
            service.bulk_reactivate([deleted.id, active.id], "bob")

        assert deleted.is_deleted()

    def test_all_or_nothing_complete_batch(self, repository, clock, make_document):
        config = LifecycleConfig(environment="test", bulk_mode="all_or_nothing")
        service = SoftDeleteService(repository, config=config, clock=clock)
        docs = [make_document(f"SOP-{i}") for i in range(2)]

        assert service.bulk_soft_delete([d.id for d in docs], "alice") == 2


class TestValidation:
    """Invalid input fails before the data layer is touched."""

    @pytest.mark.parametrize("entity_id", [None, "", "not-a-uuid"])
    def test_invalid_entity_id(self, detached_repository, config, entity_id):
        service = SoftDeleteService(detached_repository, config=config)

        with pytest.raises(SoftDeleteValidationError):
            service.soft_delete(entity_id, "alice")
        with pytest.raises(SoftDeleteValidationError):
            service.reactivate_strict(entity_id, "alice")

        assert detached_repository.method_calls == []

    @pytest.mark.parametrize("actor", [None, "", "   "])
    def test_missing_actor(self, detached_repository, config, actor):
        service = SoftDeleteService(detached_repository, config=config)

        with pytest.raises(SoftDeleteValidationError) as exc:
            service.soft_delete(uuid.uuid4(), actor)
        assert "Actor ID is required" in str(exc.value)

        with pytest.raises(SoftDeleteValidationError):
            service.bulk_reactivate([uuid.uuid4()], actor)

        assert detached_repository.method_calls == []

    @pytest.mark.parametrize("entity_ids", [None, [], "abc", 5])
    def test_invalid_batch(self, detached_repository, config, entity_ids):
        service = SoftDeleteService(detached_repository, config=config)

        with pytest.raises(SoftDeleteValidationError):
            service.bulk_soft_delete(entity_ids, "alice")

        assert detached_repository.method_calls == []

    def test_batch_too_large(self, detached_repository):
        config = LifecycleConfig(environment="test", max_bulk_size=2)
        service = SoftDeleteService(detached_repository, config=config)

        with pytest.raises(SoftDeleteValidationError) as exc:
            service.bulk_soft_delete([uuid.uuid4() for _ in range(3)], "alice")

        assert "exceeds the maximum of 2" in str(exc.value)
        assert detached_repository.method_calls == []

    def test_invalid_period(self, service):
        start = datetime(2026, 3, 2)

        with pytest.raises(SoftDeleteValidationError):
            service.find_deleted_between(start, start - timedelta(days=1), "carol")
        with pytest.raises(SoftDeleteValidationError):
            service.find_deleted_between(None, start, "carol")


class TestPermissions:
    def test_denied_soft_delete_leaves_entity(
        self, guarded_service, make_document, audit_logger
    ):
        doc = make_document()

        with pytest.raises(InsufficientPermissionsException) as exc:
            guarded_service.soft_delete(doc.id, "mallory")

        assert exc.value.user_id == "mallory"
        assert exc.value.kind == ErrorKind.INSUFFICIENT_PERMISSIONS
        assert "lacks permission to soft delete" in str(exc.value)
        assert doc.is_active()
        audit_logger.log_activity.assert_not_called()

    def test_denied_reactivate(self, guarded_service, make_document):
        doc = make_document()
        guarded_service.soft_delete(doc.id, "alice")

        with pytest.raises(InsufficientPermissionsException):
            guarded_service.reactivate(doc.id, "carol")

        assert doc.is_deleted()

    def test_bulk_denied_for_any_id_aborts(self, repository, config, make_document):
        mine = make_document("SOP-001", owner="mallory")
        theirs = make_document("SOP-002", owner="alice")
        owners = {mine.id: "mallory", theirs.id: "alice"}
        policy = RoleBasedPolicy(owner_lookup=owners.get)
        service = SoftDeleteService(repository, permission_policy=policy, config=config)

        with pytest.raises(InsufficientPermissionsException) as exc:
            service.bulk_soft_delete([mine.id, theirs.id], "mallory")

        assert exc.value.entity_id == theirs.id
        assert mine.is_active()
        assert service.soft_delete(mine.id, "mallory") is True

    def test_predicates(self, guarded_service, make_document):
        doc = make_document()

        assert guarded_service.can_soft_delete(doc.id, "alice") is True
        assert guarded_service.can_reactivate(doc.id, "mallory") is False
        assert guarded_service.can_view_deleted("carol") is True
        assert guarded_service.can_view_deleted("alice") is False

    def test_deleted_reads_require_permission(self, guarded_service, make_document):
        doc = make_document()
        guarded_service.soft_delete(doc.id, "alice")

        with pytest.raises(InsufficientPermissionsException) as exc:
            guarded_service.find_all_deleted("alice")
        assert "on deleted records" in str(exc.value)

        with pytest.raises(InsufficientPermissionsException):
            guarded_service.count_deleted("mallory")

        assert guarded_service.find_all_deleted("carol") == [doc]
        assert guarded_service.count_deleted("carol") == 1


class TestCascadingConstraints:
    @pytest.fixture
    def attachments(self, db_session):
        return SoftDeleteRepository(db_session, Attachment)

    def test_active_dependents_block_delete(
        self, service, make_document, make_attachment, active_attachments
    ):
        service.register_dependency("attachments", active_attachments)
        doc = make_document()
        make_attachment(doc)

        with pytest.raises(CascadingConstraintViolation) as exc:
            service.soft_delete(doc.id, "alice")

        assert "1 active attachments" in str(exc.value)
        assert exc.value.kind == ErrorKind.CASCADING_CONSTRAINT_VIOLATION
        assert doc.is_active()

    def test_inactive_dependents_do_not_block(
        self,
        service,
        attachments,
        make_document,
        make_attachment,
        active_attachments,
        clock,
    ):
        service.register_dependency("attachments", active_attachments)
        doc = make_document()
        attachment = make_attachment(doc)
        attachments.deactivate_by_id(attachment.id, clock(), "alice")
        attachments.commit()

        assert service.soft_delete(doc.id, "alice") is True

    def test_deleted_entity_skips_dependency_check(
        self, service, make_document, make_attachment, active_attachments
    ):
        doc = make_document()
        make_attachment(doc)
        service.soft_delete(doc.id, "alice")
        service.register_dependency("attachments", active_attachments)

        assert service.soft_delete(doc.id, "alice") is False

    def test_partial_bulk_skips_blocked_ids(
        self, service, make_document, make_attachment, active_attachments, audit_logger
    ):
        service.register_dependency("attachments", active_attachments)
        free = make_document("SOP-001")
        blocked = make_document("SOP-002")
        make_attachment(blocked)

        assert service.bulk_soft_delete([free.id, blocked.id], "alice") == 1

        assert free.is_deleted()
        assert blocked.is_active()
        details = audit_logger.log_activity.call_args.kwargs["details"]
        assert details["entity_ids"] == [str(free.id)]

    def test_partial_bulk_all_blocked(
        self, service, make_document, make_attachment, active_attachments
    ):
        service.register_dependency("attachments", active_attachments)
        blocked = make_document()
        make_attachment(blocked)

        assert service.bulk_soft_delete([blocked.id], "alice") == 0
        assert blocked.is_active()

    def test_all_or_nothing_bulk_blocked_before_any_write(
        self,
        repository,
        clock,
        make_document,
        make_attachment,
        active_attachments,
    ):
        config = LifecycleConfig(environment="test", bulk_mode="all_or_nothing")
        service = SoftDeleteService(repository, config=config, clock=clock)
        service.register_dependency("attachments", active_attachments)
        free = make_document("SOP-001")
        blocked = make_document("SOP-002")
        make_attachment(blocked)

        with pytest.raises(CascadingConstraintViolation) as exc:
            service.bulk_soft_delete([free.id, blocked.id], "alice")

        assert exc.value.entity_id == blocked.id
        assert free.is_active()
        assert blocked.is_active()

    def test_strict_checks_dependencies(
        self, service, make_document, make_attachment, active_attachments
    ):
        service.register_dependency("attachments", active_attachments)
        doc = make_document()
        make_attachment(doc)

        with pytest.raises(CascadingConstraintViolation):
            service.soft_delete_strict(doc.id, "alice")


class TestAuditReads:
    def test_find_deleted_by_actor(self, service, make_document):
        docs = [make_document(f"SOP-{i}") for i in range(3)]
        service.soft_delete(docs[0].id, "alice")
        service.soft_delete(docs[1].id, "bob")
        service.soft_delete(docs[2].id, "alice")

        found = service.find_deleted_by_actor("alice", requested_by="carol")

        assert found == [docs[2], docs[0]]

    def test_find_deleted_between(self, service, make_document, clock):
        docs = [make_document(f"SOP-{i}") for i in range(3)]
        start = clock.current
        service.soft_delete(docs[0].id, "alice")
        service.soft_delete(docs[1].id, "alice")
        end = clock.current
        service.soft_delete(docs[2].id, "alice")

        found = service.find_deleted_between(start, end, requested_by="carol")

        assert found == [docs[1], docs[0]]

    def test_deletion_report(self, service, make_document, clock):
        docs = [make_document(f"SOP-{i}") for i in range(3)]
        start = clock.current
        service.soft_delete(docs[0].id, "alice")
        service.soft_delete(docs[1].id, "bob")
        service.soft_delete(docs[2].id, "alice")
        service.reactivate(docs[1].id, "bob")

        report = service.generate_deletion_report(
            start, clock.current, requested_by="carol"
        )

        assert report.entity_type == "Document"
        assert report.total_deletions == 2
        assert report.by_actor == {"alice": 2}
        assert report.by_day == {"2026-03-01": 2}

    def test_report_requires_permission(self, guarded_service):
        with pytest.raises(InsufficientPermissionsException):
            guarded_service.generate_deletion_report(
                datetime(2026, 1, 1), datetime(2026, 12, 31), requested_by="alice"
            )


class TestAuditHook:
    def test_soft_delete_logged(self, service, make_document, audit_logger, clock):
        doc = make_document()

        service.soft_delete(doc.id, "alice")

        audit_logger.log_activity.assert_called_once_with(
            user_id="alice",
            activity_type="SOFT_DELETE",
            entity_type="Document",
            entity_id=str(doc.id),
            details={
                "application": "Lifecycle Application",
                "deleted_at": clock.current.isoformat(),
            },
        )

    def test_reactivate_logged(self, service, make_document, audit_logger):
        doc = make_document()
        service.soft_delete(doc.id, "alice")
        audit_logger.reset_mock()

        service.reactivate(doc.id, "bob")

        kwargs = audit_logger.log_activity.call_args.kwargs
        assert kwargs["activity_type"] == "REACTIVATE"
        assert kwargs["user_id"] == "bob"

    def test_noop_not_logged(self, service, audit_logger):
        service.soft_delete(uuid.uuid4(), "alice")

        audit_logger.log_activity.assert_not_called()

    def test_bulk_logged_once(self, service, make_document, audit_logger):
        docs = [make_document(f"SOP-{i}") for i in range(2)]

        service.bulk_soft_delete([d.id for d in docs] + [uuid.uuid4()], "alice")

        audit_logger.log_activity.assert_called_once()
        kwargs = audit_logger.log_activity.call_args.kwargs
        assert kwargs["activity_type"] == "BULK_SOFT_DELETE"
        assert kwargs["entity_id"] is None
        assert kwargs["details"]["affected"] == 2
        assert len(kwargs["details"]["entity_ids"]) == 3

    def test_audit_disabled(self, repository, audit_logger, make_document):
        config = LifecycleConfig(environment="test", audit_enabled=False)
        service = SoftDeleteService(
            repository, audit_logger=audit_logger, config=config
        )
        doc = make_document()

        assert service.soft_delete(doc.id, "alice") is True
        audit_logger.log_activity.assert_not_called()

    def test_audit_failure_does_not_mask_transition(
        self, service, make_document, audit_logger, caplog
    ):
        audit_logger.log_activity.side_effect = RuntimeError("audit store down")
        doc = make_document()

        assert service.soft_delete(doc.id, "alice") is True

        assert doc.is_deleted()
        assert "Failed to record SOFT_DELETE audit event" in caplog.text
        assert "audit store down" in caplog.text

    def test_audit_failure_in_strict_and_bulk(
        self, service, make_document, audit_logger
    ):
        audit_logger.log_activity.side_effect = RuntimeError("audit store down")
        doc = make_document("SOP-001")
        others = [make_document(f"SOP-1{i}") for i in range(2)]

        assert service.soft_delete_strict(doc.id, "alice").is_deleted()
        assert service.reactivate_strict(doc.id, "bob").is_active()
        assert service.bulk_soft_delete([d.id for d in others], "alice") == 2
        assert service.bulk_reactivate([d.id for d in others], "bob") == 2
