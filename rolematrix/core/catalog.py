"""Permission & role catalog.

Holds the canonical roles and permissions and performs the administrator
operations on roles.  Features and their dependency edges come from
configuration (``load_catalog_file``) and are read-only here.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from rolematrix.config import Settings, settings
from rolematrix.core.lifecycle import RoleLifecycleGuard
from rolematrix.core.models import CatalogSnapshot, Permission, Role, RolePatch
from rolematrix.exceptions import (
    CatalogError,
    DuplicateNameError,
    InvalidRoleError,
    PermissionNotFoundError,
    ProtectedRoleError,
    RoleNotFoundError,
)
from rolematrix.storage.base import Persistence

logger = logging.getLogger("rolematrix.catalog")


class CatalogFile(CatalogSnapshot):
    """On-disk catalog: a snapshot plus the initial grants per role id."""

    grants: dict[str, list[str]] = Field(default_factory=dict)

    def snapshot(self) -> CatalogSnapshot:
        return CatalogSnapshot.model_validate(self.model_dump(exclude={"grants"}))


def load_catalog_file(path: Path | str) -> CatalogFile:
    """Parse and sanity-check a JSON catalog file.

    Duplicate ids and grants for unknown roles/features raise
    ``CatalogError``; dependency cycles are left to the graph.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogError(f"Cannot read catalog file {path}: {exc}") from exc

    try:
        catalog = CatalogFile.model_validate(data)
    except PydanticValidationError as exc:
        raise CatalogError(f"Invalid catalog file {path}: {exc}") from exc
    for label, ids in (
        ("feature", [f.id for f in catalog.features]),
        ("role", [r.id for r in catalog.roles]),
        ("permission", [p.id for p in catalog.permissions]),
        ("category", [c.id for c in catalog.categories]),
    ):
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise CatalogError(f"Duplicate {label} ids: {', '.join(dupes)}")

    names = [r.name.strip().lower() for r in catalog.roles]
    dupe_names = sorted({n for n in names if names.count(n) > 1})
    if dupe_names:
        raise CatalogError(f"Duplicate role names: {', '.join(dupe_names)}")

    role_ids = {r.id for r in catalog.roles}
    feature_ids = {f.id for f in catalog.features}
    for role_id, granted in catalog.grants.items():
        if role_id not in role_ids:
            raise CatalogError(f"Grants reference unknown role {role_id}")
        unknown = sorted(set(granted) - feature_ids)
        if unknown:
            raise CatalogError(f"Grants for {role_id} reference unknown features: {', '.join(unknown)}")
    return catalog


async def seed_persistence(persistence: Persistence, catalog: CatalogFile) -> None:
    """Write a catalog file and its initial grants into *persistence*."""
    await persistence.save_catalog(catalog.snapshot())
    for role_id, feature_ids in catalog.grants.items():
        await persistence.grant_cells(role_id, feature_ids)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RoleCatalog:
    """Roles and permissions, with validated administrator operations."""

    def __init__(
        self,
        persistence: Persistence,
        roles: Sequence[Role],
        permissions: Sequence[Permission],
        feature_ids: Sequence[str],
        *,
        guard: RoleLifecycleGuard | None = None,
        config: Settings = settings,
    ) -> None:
        self.persistence = persistence
        self.guard = guard or RoleLifecycleGuard()
        self.config = config
        self._roles: dict[str, Role] = {r.id: r for r in roles}
        self._permissions: dict[str, Permission] = {p.id: p for p in permissions}
        self._feature_ids = list(feature_ids)

    # -- reads ----------------------------------------------------------

    def list_roles(self) -> list[Role]:
        return list(self._roles.values())

    def get_role(self, role_id: str) -> Role:
        try:
            return self._roles[role_id]
        except KeyError:
            raise RoleNotFoundError(role_id) from None

    def find_role_by_name(self, name: str) -> Role | None:
        key = name.strip().lower()
        for role in self._roles.values():
            if role.name.lower() == key:
                return role
        return None

    def list_permissions(self) -> list[Permission]:
        return list(self._permissions.values())

    def get_permission(self, permission_id: str) -> Permission:
        try:
            return self._permissions[permission_id]
        except KeyError:
            raise PermissionNotFoundError(permission_id) from None

    def permissions_by_category(self) -> dict[str, list[Permission]]:
        grouped: dict[str, list[Permission]] = {}
        for permission in self._permissions.values():
            grouped.setdefault(permission.category, []).append(permission)
        return grouped

    # -- validation -----------------------------------------------------

    def validate_role_data(
        self,
        name: str | None,
        description: str | None,
        permissions: Sequence[str] | None,
    ) -> list[str]:
        """Field-level problems with role data; empty when valid."""
        errors = self._name_errors(name) + self._description_errors(description)
        if not permissions:
            errors.append("At least one permission must be selected")
        return errors

    def _name_errors(self, name: str | None) -> list[str]:
        cfg = self.config
        stripped = (name or "").strip()
        if not stripped:
            return ["Role name is required"]
        if len(stripped) < cfg.role_name_min_length:
            return [f"Role name must be at least {cfg.role_name_min_length} characters"]
        if len(stripped) > cfg.role_name_max_length:
            return [f"Role name must be at most {cfg.role_name_max_length} characters"]
        return []

    def _description_errors(self, description: str | None) -> list[str]:
        limit = self.config.role_description_max_length
        desc = (description or "").strip()
        if not desc:
            return ["Role description is required"]
        if len(desc) > limit:
            return [f"Role description must be at most {limit} characters"]
        return []

    def _check_permissions(self, permissions: Sequence[str]) -> None:
        for permission_id in permissions:
            self.get_permission(permission_id)

    def _check_unique_name(self, name: str, exclude_id: str | None = None) -> None:
        existing = self.find_role_by_name(name)
        if existing is not None and existing.id != exclude_id:
            raise DuplicateNameError(name.strip())

    # -- mutations ------------------------------------------------------

    async def create_role(
        self,
        name: str,
        description: str,
        permissions: Sequence[str],
        *,
        is_admin: bool = False,
        is_system_role: bool = False,
    ) -> Role:
        """Create a role and seed its all-denied matrix row."""
        errors = self.validate_role_data(name, description, permissions)
        if errors:
            raise InvalidRoleError(errors)
        self._check_unique_name(name)
        self._check_permissions(permissions)

        role = Role(
            name=name.strip(),
            description=description.strip(),
            permissions=list(permissions),
            is_admin=is_admin,
            is_system_role=is_system_role,
        )
        await self.persistence.persist_role(role, seed_features=self._feature_ids)
        self._roles[role.id] = role
        logger.info("Role created: %s", role.name, extra={"role_id": role.id})
        return role

    async def update_role(self, role_id: str, patch: RolePatch) -> Role:
        role = self.get_role(role_id)
        updates: dict = {}

        if patch.name is not None:
            new_name = patch.name.strip()
            if new_name != role.name:
                if role.is_system_role:
                    raise ProtectedRoleError(role_id, action="renamed")
                errors = self._name_errors(new_name)
                if errors:
                    raise InvalidRoleError(errors)
                self._check_unique_name(new_name, exclude_id=role_id)
                updates["name"] = new_name
                if patch.display_name is None:
                    updates["display_name"] = new_name

        if patch.display_name is not None:
            updates["display_name"] = patch.display_name.strip() or updates.get("name", role.name)

        if patch.description is not None:
            errors = self._description_errors(patch.description)
            if errors:
                raise InvalidRoleError(errors)
            updates["description"] = patch.description.strip()

        if patch.permissions is not None:
            if not patch.permissions:
                raise InvalidRoleError(["At least one permission must be selected"])
            self._check_permissions(patch.permissions)
            updates["permissions"] = list(dict.fromkeys(patch.permissions))

        if patch.is_admin is not None:
            updates["is_admin"] = patch.is_admin

        if not updates:
            return role

        updated = role.model_copy(update={**updates, "updated_at": _now()})
        await self.persistence.persist_role(updated)
        self._roles[role_id] = updated
        logger.info("Role updated: %s", updated.name, extra={"role_id": role_id})
        return updated

    async def delete_role(self, role_id: str) -> Role:
        """Delete a role after the lifecycle guard approves it."""
        role = self.get_role(role_id)
        self.guard.ensure_deletable(role)
        await self.persistence.delete_role_record(role_id)
        del self._roles[role_id]
        logger.info("Role deleted: %s", role.name, extra={"role_id": role_id})
        return role

    async def set_role_permission(self, role_id: str, permission_id: str, granted: bool) -> Role:
        role = self.get_role(role_id)
        self.get_permission(permission_id)
        if granted:
            permissions = [*role.permissions, permission_id]
        else:
            permissions = [p for p in role.permissions if p != permission_id]
        if not permissions:
            raise InvalidRoleError(["At least one permission must remain assigned"])
        return await self.update_role(role_id, RolePatch(permissions=permissions))

    async def adjust_principal_count(self, role_id: str, delta: int) -> Role:
        """Record principals gaining (+) or losing (-) this role."""
        role = self.get_role(role_id)
        count = role.assigned_principal_count + delta
        if count < 0:
            raise InvalidRoleError(
                [f"Role {role.name} has only {role.assigned_principal_count} assigned users"]
            )
        updated = role.model_copy(update={"assigned_principal_count": count, "updated_at": _now()})
        await self.persistence.persist_role(updated)
        self._roles[role_id] = updated
        return updated
