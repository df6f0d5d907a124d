"""Tests for role deletion safety."""

from __future__ import annotations

import pytest

from rolematrix.core.lifecycle import RoleLifecycleGuard
from rolematrix.core.models import Role
from rolematrix.exceptions import ProtectedRoleError, RoleInUseError, RoleNotFoundError


class TestGuard:
    def test_unassigned_custom_role_is_deletable(self):
        check = RoleLifecycleGuard().can_delete(Role(name="Temp Role"))
        assert check.allowed
        assert check.reason is None

    def test_assigned_principals_block(self):
        role = Role(name="Busy", assigned_principal_count=2)
        check = RoleLifecycleGuard().can_delete(role)
        assert not check.allowed
        assert check.reason == "users_assigned"
        assert check.detail == {"assigned_principal_count": 2}

    def test_users_reported_before_system_flag(self):
        role = Role(name="Administrator", is_system_role=True, assigned_principal_count=1)
        assert RoleLifecycleGuard().can_delete(role).reason == "users_assigned"

    def test_system_role_without_users(self):
        role = Role(name="Administrator", is_system_role=True)
        check = RoleLifecycleGuard().can_delete(role)
        assert check.reason == "system_role"
        with pytest.raises(ProtectedRoleError):
            RoleLifecycleGuard().ensure_deletable(role)


class TestDeleteRole:
    @pytest.mark.asyncio
    async def test_delete_removes_row_everywhere(self, service, memory_store):
        await service.toggle_feature("temp", "themes", True)
        deleted = await service.delete_role("temp")
        assert deleted.id == "temp"

        assert not service.matrix.has_role("temp")
        with pytest.raises(RoleNotFoundError):
            service.get_role("temp")
        with pytest.raises(RoleNotFoundError):
            await service.toggle_feature("temp", "themes", True)

        assert not [c for c in await memory_store.load_matrix() if c.role_id == "temp"]
        assert "temp" not in await memory_store.load_revisions()

    @pytest.mark.asyncio
    async def test_new_role_with_principal_cannot_be_deleted(self, service, memory_store):
        role = await service.create_role("Short Lived", "Created then assigned", ["expense_read"])
        await service.adjust_principal_count(role.id, 1)

        with pytest.raises(RoleInUseError) as exc_info:
            await service.delete_role(role.id)
        assert exc_info.value.principal_count == 1
        assert service.get_role(role.id).assigned_principal_count == 1
        assert service.matrix.has_role(role.id)

        await service.adjust_principal_count(role.id, -1)
        await service.delete_role(role.id)
        assert not [c for c in await memory_store.load_matrix() if c.role_id == role.id]

    @pytest.mark.asyncio
    async def test_officer_in_use(self, service):
        check = service.can_delete("officer")
        assert check.reason == "users_assigned"
        with pytest.raises(RoleInUseError):
            await service.delete_role("officer")
        assert service.matrix.granted_features("officer")

    @pytest.mark.asyncio
    async def test_system_role_protected_once_unassigned(self, service):
        await service.adjust_principal_count("admin", -1)
        assert service.can_delete("admin").reason == "system_role"
        with pytest.raises(ProtectedRoleError):
            await service.delete_role("admin")
        assert service.get_role("admin").is_system_role

    @pytest.mark.asyncio
    async def test_unknown_role(self, service):
        with pytest.raises(RoleNotFoundError):
            await service.delete_role("nobody")

    @pytest.mark.asyncio
    async def test_name_reusable_after_delete(self, service):
        await service.delete_role("temp")
        role = await service.create_role("temp role", "Recreated", ["expense_read"])
        assert role.id != "temp"
