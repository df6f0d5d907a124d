"""Role deletion safety.

A role with assigned principals is never deleted: doing so would orphan
the access decisions of every principal still holding it.  System roles
are protected regardless of assignments.
"""

from __future__ import annotations

from rolematrix.core.models import DeletionCheck, Role
from rolematrix.exceptions import ProtectedRoleError, RoleInUseError


class RoleLifecycleGuard:
    """Decides whether a role may be deleted."""

    def can_delete(self, role: Role) -> DeletionCheck:
        if role.assigned_principal_count > 0:
            return DeletionCheck(
                allowed=False,
                reason="users_assigned",
                detail={"assigned_principal_count": role.assigned_principal_count},
            )
        if role.is_system_role:
            return DeletionCheck(allowed=False, reason="system_role")
        return DeletionCheck(allowed=True)

    def ensure_deletable(self, role: Role) -> None:
        """Raise ``RoleInUseError`` or ``ProtectedRoleError`` if deletion is unsafe."""
        check = self.can_delete(role)
        if check.reason == "users_assigned":
            raise RoleInUseError(role.id, role.assigned_principal_count)
        if check.reason == "system_role":
            raise ProtectedRoleError(role.id)
