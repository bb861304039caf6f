"""
Access control for lifecycle operations.

The lifecycle service consults a :class:`PermissionPolicy` before every
mutation and before exposing deleted records. The policy itself is opaque to
the service; this module ships the common ones:

* :class:`AllowAllPolicy` - everything permitted (the default)
* :class:`RoleBasedPolicy` - role definitions assigned to actors, with
  optional owner rights
* :class:`CallablePolicy` - adapts a single ``checker(user_id, action,
  entity_id)`` function
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Union

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    """Permissions understood by the lifecycle service."""

    SOFT_DELETE = "soft_delete"
    REACTIVATE = "reactivate"
    VIEW_DELETED = "view_deleted"
    ADMIN = "admin"


@dataclass
class Actor:
    """A user or process with a set of lifecycle permissions."""

    id: str
    roles: List[str] = field(default_factory=list)
    permissions: Set[Permission] = field(default_factory=set)

    def has_permission(self, permission: Union[str, Permission]) -> bool:
        """Check if actor has a specific permission."""
        if isinstance(permission, str):
            permission = Permission(permission)
        return permission in self.permissions or Permission.ADMIN in self.permissions


class RoleDefinition(BaseModel):
    """Role definition with permissions."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    permissions: List[Permission]

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: List[Permission]) -> List[Permission]:
        """Remove duplicates while keeping declaration order."""
        return list(dict.fromkeys(v))


DEFAULT_ROLES: Dict[str, RoleDefinition] = {
    "viewer": RoleDefinition(name="viewer", description="Read-only", permissions=[]),
    "editor": RoleDefinition(
        name="editor",
        description="May soft delete and reactivate records",
        permissions=[Permission.SOFT_DELETE, Permission.REACTIVATE],
    ),
    "auditor": RoleDefinition(
        name="auditor",
        description="May inspect deleted records",
        permissions=[Permission.VIEW_DELETED],
    ),
    "admin": RoleDefinition(
        name="admin", description="Full access", permissions=[Permission.ADMIN]
    ),
}


class PermissionPolicy(Protocol):
    """Authorization predicates consulted by the lifecycle service."""

    def can_soft_delete(self, entity_id: Any, user_id: Any) -> bool:
        ...

    def can_reactivate(self, entity_id: Any, user_id: Any) -> bool:
        ...

    def can_view_deleted(self, user_id: Any) -> bool:
        ...


class AllowAllPolicy:
    """Policy that permits every operation."""

    def can_soft_delete(self, entity_id: Any, user_id: Any) -> bool:
        return True

    def can_reactivate(self, entity_id: Any, user_id: Any) -> bool:
        return True

    def can_view_deleted(self, user_id: Any) -> bool:
        return True


class RoleBasedPolicy:
    """
    Role-based policy.

    Actors are assigned roles; a role grants permissions. When an
    ``owner_lookup`` is supplied, the owner of a record may soft delete and
    reactivate it without holding the permission.

    Example:
        >>> policy = RoleBasedPolicy()
        >>> policy.assign_role("alice", "editor")
        >>> policy.can_soft_delete(doc_id, "alice")
        True
    """

    def __init__(
        self,
        roles: Optional[Dict[str, RoleDefinition]] = None,
        owner_lookup: Optional[Callable[[Any], Optional[str]]] = None,
    ):
        self.roles: Dict[str, RoleDefinition] = dict(roles or DEFAULT_ROLES)
        self.owner_lookup = owner_lookup
        self._assignments: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def add_role(self, role: RoleDefinition) -> None:
        with self._lock:
            self.roles[role.name] = role

    def assign_role(self, user_id: Any, role_name: str) -> None:
        """Assign a role to an actor."""
        if role_name not in self.roles:
            raise ValueError(f"Unknown role: {role_name}")
        with self._lock:
            self._assignments.setdefault(str(user_id), set()).add(role_name)

    def revoke_role(self, user_id: Any, role_name: str) -> None:
        with self._lock:
            self._assignments.get(str(user_id), set()).discard(role_name)

    def get_actor(self, user_id: Any) -> Actor:
        """Resolve an actor's roles into an :class:`Actor`."""
        with self._lock:
            role_names = sorted(self._assignments.get(str(user_id), set()))
            permissions: Set[Permission] = set()
            for name in role_names:
                permissions.update(self.roles[name].permissions)
        return Actor(id=str(user_id), roles=role_names, permissions=permissions)

    def _is_owner(self, entity_id: Any, user_id: Any) -> bool:
        if self.owner_lookup is None:
            return False
        owner = self.owner_lookup(entity_id)
        return owner is not None and str(owner) == str(user_id)

    def _check(self, permission: Permission, entity_id: Any, user_id: Any) -> bool:
        if user_id is None:
            return False
        if self.get_actor(user_id).has_permission(permission):
            return True
        if entity_id is not None and self._is_owner(entity_id, user_id):
            return True
        logger.debug(f"{user_id} lacks {permission.value} on {entity_id}")
        return False

    def can_soft_delete(self, entity_id: Any, user_id: Any) -> bool:
        return self._check(Permission.SOFT_DELETE, entity_id, user_id)

    def can_reactivate(self, entity_id: Any, user_id: Any) -> bool:
        return self._check(Permission.REACTIVATE, entity_id, user_id)

    def can_view_deleted(self, user_id: Any) -> bool:
        return self._check(Permission.VIEW_DELETED, None, user_id)


class CallablePolicy:
    """Adapt a ``checker(user_id, action, entity_id) -> bool`` function."""

    def __init__(self, checker: Callable[[Any, Permission, Any], bool]):
        self.checker = checker

    def can_soft_delete(self, entity_id: Any, user_id: Any) -> bool:
        return bool(self.checker(user_id, Permission.SOFT_DELETE, entity_id))

    def can_reactivate(self, entity_id: Any, user_id: Any) -> bool:
        return bool(self.checker(user_id, Permission.REACTIVATE, entity_id))

    def can_view_deleted(self, user_id: Any) -> bool:
        return bool(self.checker(user_id, Permission.VIEW_DELETED, None))


__all__ = [
    "Permission",
    "Actor",
    "RoleDefinition",
    "DEFAULT_ROLES",
    "PermissionPolicy",
    "AllowAllPolicy",
    "RoleBasedPolicy",
    "CallablePolicy",
]
