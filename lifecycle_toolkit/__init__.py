"""
Lifecycle Toolkit - soft delete semantics for SQLAlchemy applications.

Records are never physically removed. They are marked INACTIVE, stamped with
who deactivated them and when, and excluded from normal reads while staying
available to reactivation and explicit audit queries.

Quick Start
-----------
>>> from lifecycle_toolkit import LifecycleMixin, SoftDeleteService
>>> from lifecycle_toolkit import SoftDeleteRepository
>>>
>>> class Document(Base, LifecycleMixin):
...     __tablename__ = "documents"
...     title = mapped_column(String(200))
>>>
>>> service = SoftDeleteService(SoftDeleteRepository(session, Document))
>>> service.soft_delete(document.id, "user-42")
True
>>> service.find_all_active()
[]
"""

__version__ = "1.0.0"

from .access_control import (
    AllowAllPolicy,
    CallablePolicy,
    Permission,
    PermissionPolicy,
    RoleBasedPolicy,
)
from .config import BulkMode, LifecycleConfig, configure, get_config, set_config
from .soft_delete import (
    EntityStatus,
    LifecycleMixin,
    SoftDeleteError,
    SoftDeleteRepository,
    SoftDeleteService,
)

__all__ = [
    # Soft Delete
    "EntityStatus",
    "LifecycleMixin",
    "SoftDeleteRepository",
    "SoftDeleteService",
    "SoftDeleteError",
    # Access Control
    "Permission",
    "PermissionPolicy",
    "AllowAllPolicy",
    "RoleBasedPolicy",
    "CallablePolicy",
    # Configuration
    "LifecycleConfig",
    "BulkMode",
    "get_config",
    "set_config",
    "configure",
]
