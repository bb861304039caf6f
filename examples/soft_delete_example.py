#!/usr/bin/env python3
"""
Soft Delete Example - Lifecycle Toolkit

Demonstrates the document lifecycle:
- Soft deleting and reactivating records
- Reads that hide deleted records by default
- Role-based permissions and gated audit queries
- Blocking deletes while dependent records are active
"""

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, String, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from lifecycle_toolkit import RoleBasedPolicy, SoftDeleteRepository, SoftDeleteService
from lifecycle_toolkit.soft_delete import (
    CascadingConstraintViolation,
    EntityStatus,
    InsufficientPermissionsException,
    LifecycleMixin,
    register_soft_delete_listeners,
)


class Base(DeclarativeBase):
    pass


class Batch(Base, LifecycleMixin):
    """Manufacturing batch record."""

    __tablename__ = "batches"

    number: Mapped[str] = mapped_column(String(50))
    product: Mapped[Optional[str]] = mapped_column(String(100))


class Sample(Base, LifecycleMixin):
    """QC sample taken from a batch."""

    __tablename__ = "samples"

    batch_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("batches.id"))
    label: Mapped[str] = mapped_column(String(50))


class PrintingAuditLogger:
    """Stand-in audit logger that prints each lifecycle event."""

    def log_activity(self, **event):
        print(f"  [audit] {event['activity_type']} by {event['user_id']}")


def main():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    register_soft_delete_listeners(Base)

    policy = RoleBasedPolicy()
    policy.assign_role("qa.manager", "editor")
    policy.assign_role("auditor", "auditor")

    with Session(engine) as session:
        batches = SoftDeleteRepository(session, Batch)
        samples = SoftDeleteRepository(session, Sample)
        service = SoftDeleteService(
            batches, permission_policy=policy, audit_logger=PrintingAuditLogger()
        )

        def active_samples(batch_id):
            stmt = (
                select(func.count())
                .select_from(Sample)
                .where(
                    Sample.batch_id == batch_id, Sample.status == EntityStatus.ACTIVE
                )
            )
            return session.execute(stmt).scalar_one()

        service.register_dependency("samples", active_samples)

        print("1. Creating batches")
        b1 = batches.add(Batch(number="B-001", product="Aspirin"), "operator")
        b2 = batches.add(Batch(number="B-002", product="Aspirin"), "operator")
        sample = samples.add(Sample(batch_id=b2.id, label="QC-17"), "lab.tech")
        batches.commit()
        print(f"   Active batches: {service.count_active()}")

        print("\n2. Soft delete without permission")
        try:
            service.soft_delete(b1.id, "operator")
        except InsufficientPermissionsException as e:
            print(f"   Refused: {e}")

        print("\n3. Soft delete B-001")
        service.soft_delete(b1.id, "qa.manager")
        print(f"   Active batches: {[b.number for b in service.find_all_active()]}")
        print(f"   Deleted again: {service.soft_delete(b1.id, 'qa.manager')}")

        print("\n4. Soft delete B-002 while its sample is active")
        try:
            service.soft_delete(b2.id, "qa.manager")
        except CascadingConstraintViolation as e:
            print(f"   Refused: {e}")

        samples.deactivate_by_id(sample.id, service.clock(), "lab.tech")
        samples.commit()
        retired = service.soft_delete(b2.id, "qa.manager")
        print(f"   After retiring the sample: {retired}")

        print("\n5. Audit queries")
        deleted = service.find_all_deleted(requested_by="auditor")
        for batch in deleted:
            print(f"   {batch.number} deleted by {batch.deleted_by}")

        print("\n6. Reactivate B-001")
        restored = service.reactivate_strict(b1.id, "qa.manager")
        print(f"   {restored.number} status: {restored.status.value}")


if __name__ == "__main__":
    main()
