"""Custom exception hierarchy for rolematrix.

Every error carries a ``status_code`` and ``error_type`` so an API layer
can translate it into a consistent response without inspecting the
message.  All mutation-path errors are recoverable: the stored matrix is
untouched when one is raised.  ``CyclicDependencyError`` is the only
fatal one and is raised while a catalog is being loaded.
"""

from __future__ import annotations

from typing import Any


class RoleMatrixError(Exception):
    """Base exception for all rolematrix errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        super().__init__(message)


class StorageError(RoleMatrixError):
    """Persistence collaborator failure."""

    status_code = 503
    error_type = "storage_error"


class NotFoundError(RoleMatrixError):
    """Requested resource was not found."""

    status_code = 404
    error_type = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class RoleNotFoundError(NotFoundError):
    error_type = "role_not_found"

    def __init__(self, role_id: str) -> None:
        super().__init__("Role", role_id)


class FeatureNotFoundError(NotFoundError):
    error_type = "feature_not_found"

    def __init__(self, feature_id: str) -> None:
        super().__init__("Feature", feature_id)


class PermissionNotFoundError(NotFoundError):
    error_type = "permission_not_found"

    def __init__(self, permission_id: str) -> None:
        super().__init__("Permission", permission_id)


class CategoryNotFoundError(NotFoundError):
    error_type = "category_not_found"

    def __init__(self, category_id: str) -> None:
        super().__init__("Category", category_id)


class DuplicateNameError(RoleMatrixError):
    """A role with the same (case-insensitive) name already exists."""

    status_code = 409
    error_type = "duplicate_name"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"A role with this name already exists: {name}")


class CyclicDependencyError(RoleMatrixError):
    """Feature configuration contains a dependency cycle.

    Raised only while building the dependency graph; no matrix operation
    can be trusted until the configuration is fixed.
    """

    error_type = "cyclic_dependency"

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__("Cyclic feature dependency: " + " -> ".join(cycle))


class CatalogError(RoleMatrixError):
    """Catalog configuration is malformed (duplicate ids, dangling edges)."""

    error_type = "catalog_error"


class ValidationError(RoleMatrixError):
    """A proposed change was rejected.

    ``errors`` holds the structured explanation: ``ValidationIssue``
    records for matrix changes, plain strings for role data.
    """

    status_code = 400
    error_type = "validation_error"

    def __init__(self, errors: list[Any], message: str | None = None) -> None:
        self.errors = list(errors)
        if message is None:
            message = "; ".join(getattr(e, "message", str(e)) for e in self.errors)
        super().__init__(message or "Validation failed")


class InvalidRoleError(ValidationError):
    """Role data failed validation (name, description, permissions)."""

    error_type = "invalid_role"


class RoleInUseError(RoleMatrixError):
    """Role still has assigned principals and cannot be deleted."""

    status_code = 409
    error_type = "role_in_use"

    def __init__(self, role_id: str, principal_count: int) -> None:
        self.role_id = role_id
        self.principal_count = principal_count
        super().__init__(
            f"Cannot delete role {role_id} with {principal_count} assigned users"
        )


class ProtectedRoleError(RoleMatrixError):
    """System roles cannot be deleted or renamed."""

    status_code = 403
    error_type = "protected_role"

    def __init__(self, role_id: str, action: str = "deleted") -> None:
        self.role_id = role_id
        self.action = action
        super().__init__(f"System role {role_id} cannot be {action}")


class ConcurrentModificationError(RoleMatrixError):
    """A commit was based on a stale revision.

    The caller must re-fetch the matrix and retry; there is no
    last-writer-wins.
    """

    status_code = 409
    error_type = "concurrent_modification"

    def __init__(self, role_id: str, expected: int, actual: int) -> None:
        self.role_id = role_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Role {role_id} is at revision {actual}, commit was based on {expected}"
        )


ConcurrencyConflict = ConcurrentModificationError
