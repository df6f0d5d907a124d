"""Domain models for the feature access control engine.

- Role / Permission / Feature: catalog records (tagged, validated once at load)
- AccessCell / CellChange: one (role, feature) assignment and a request to change it
- ValidationIssue / ValidationResult: structured, deterministic validator output
- MatrixResult: outcome of a Matrix Engine operation (committed or rejected)
- RolePreview / BulkImpact: read-only simulations of a role or a batch
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def _unique(values: list[str]) -> list[str]:
    """Drop duplicates, keeping first-seen order."""
    return list(dict.fromkeys(values))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class IssueCode(str, Enum):
    MISSING_PREREQUISITE = "missing_prerequisite"
    ACTIVE_DEPENDENT = "active_dependent"
    CORE_FEATURE = "core_feature"
    ADMIN_ONLY = "admin_only"


class MatrixStatus(str, Enum):
    COMMITTED = "committed"
    REJECTED = "rejected"


class AccessibilityLevel(str, Enum):
    FULL = "full"
    STANDARD = "standard"
    LIMITED = "limited"


class BulkAction(str, Enum):
    ENABLE = "enable"
    DISABLE = "disable"


# ---------------------------------------------------------------------------
# Catalog records
# ---------------------------------------------------------------------------


class Permission(BaseModel):
    """Atomic capability a role may own."""

    id: str
    name: str
    description: str = ""
    category: str = Field(default="general", description="Display grouping, e.g. 'admin'")


class FeatureCategory(BaseModel):
    id: str
    name: str
    description: str = ""


class Feature(BaseModel):
    """Unit of application functionality shown or hidden per role.

    ``dependencies`` are direct prerequisites. Dependents are derived by
    the dependency graph and never stored.
    """

    id: str
    name: str
    description: str = ""
    application_id: str
    category: str = "general"
    dependencies: list[str] = Field(default_factory=list)
    is_core: bool = Field(default=False, description="Cannot be disabled once granted")
    admin_only: bool = Field(default=False, description="Only grantable to admin roles")

    @field_validator("dependencies")
    @classmethod
    def dedupe_dependencies(cls, v: list[str]) -> list[str]:
        return _unique(v)


class DependencyEdge(BaseModel):
    """``source`` requires ``target``."""

    source: str
    target: str


class Role(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    display_name: str = ""
    description: str = ""
    permissions: list[str] = Field(default_factory=list)
    is_system_role: bool = False
    is_admin: bool = Field(default=False, description="May hold admin-only features")
    assigned_principal_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("permissions")
    @classmethod
    def dedupe_permissions(cls, v: list[str]) -> list[str]:
        return _unique(v)

    @model_validator(mode="after")
    def default_display_name(self) -> Role:
        if not self.display_name:
            self.display_name = self.name
        return self


class RolePatch(BaseModel):
    """Partial update for a role; ``None`` fields are left unchanged."""

    name: str | None = None
    display_name: str | None = None
    description: str | None = None
    permissions: list[str] | None = None
    is_admin: bool | None = None


class CatalogSnapshot(BaseModel):
    """Everything the persistence collaborator hands over at startup."""

    roles: list[Role] = Field(default_factory=list)
    permissions: list[Permission] = Field(default_factory=list)
    features: list[Feature] = Field(default_factory=list)
    categories: list[FeatureCategory] = Field(default_factory=list)
    dependency_edges: list[DependencyEdge] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Access matrix
# ---------------------------------------------------------------------------


class AccessCell(BaseModel):
    role_id: str
    feature_id: str
    granted: bool


class CellChange(BaseModel):
    """A requested transition of one cell."""

    role_id: str
    feature_id: str
    granted: bool

    @classmethod
    def grant(cls, role_id: str, feature_id: str) -> CellChange:
        return cls(role_id=role_id, feature_id=feature_id, granted=True)

    @classmethod
    def revoke(cls, role_id: str, feature_id: str) -> CellChange:
        return cls(role_id=role_id, feature_id=feature_id, granted=False)


class CommitOutcome(BaseModel):
    success: bool
    new_revisions: dict[str, int] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationIssue(BaseModel):
    """One implicated feature in a rejected or risky change."""

    code: IssueCode
    role_id: str
    feature_id: str
    related_feature_id: str | None = None
    message: str


class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_issues(cls, errors: list[ValidationIssue], warnings: list[str]) -> ValidationResult:
        return cls(is_valid=not errors, errors=errors, warnings=warnings)

    @property
    def implicated_features(self) -> list[str]:
        """Feature ids the caller has to act on to resolve the errors."""
        return _unique([e.related_feature_id or e.feature_id for e in self.errors])


class MatrixResult(BaseModel):
    """Outcome of a Matrix Engine operation.

    A rejected result guarantees the stored matrix is unchanged. A
    committed result with no ``changes`` was an idempotent no-op.
    """

    status: MatrixStatus
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    changes: list[AccessCell] = Field(default_factory=list)
    revisions: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def committed(
        cls,
        changes: list[AccessCell],
        revisions: dict[str, int],
        warnings: list[str] | None = None,
    ) -> MatrixResult:
        return cls(
            status=MatrixStatus.COMMITTED,
            changes=changes,
            revisions=revisions,
            warnings=warnings or [],
        )

    @classmethod
    def rejected(
        cls, errors: list[ValidationIssue], warnings: list[str] | None = None
    ) -> MatrixResult:
        return cls(status=MatrixStatus.REJECTED, errors=errors, warnings=warnings or [])

    @property
    def ok(self) -> bool:
        return self.status == MatrixStatus.COMMITTED

    def raise_for_status(self) -> MatrixResult:
        """Raise ``ValidationError`` for a rejected result, else return self."""
        if not self.ok:
            from rolematrix.exceptions import ValidationError

            raise ValidationError(self.errors)
        return self


class MatrixEvent(BaseModel):
    """Published to subscribers after every successful commit."""

    changes: list[AccessCell]
    revisions: dict[str, int]
    timestamp: datetime = Field(default_factory=_utcnow)
    operation: str = "bulk_update"


# ---------------------------------------------------------------------------
# Preview & lifecycle
# ---------------------------------------------------------------------------


class RolePreview(BaseModel):
    role_id: str
    available_features: list[str] = Field(default_factory=list)
    navigable_apps: list[str] = Field(default_factory=list)
    navigation: dict[str, list[str]] = Field(
        default_factory=dict, description="Available feature ids grouped by category"
    )
    feature_count: int = 0
    accessibility_level: AccessibilityLevel = AccessibilityLevel.LIMITED
    warnings: list[str] = Field(default_factory=list)
    hypothetical: bool = False


class BulkImpact(BaseModel):
    """Dry-run summary of a batch of cell changes."""

    validation: ValidationResult
    cells_changed: int = 0
    roles_affected: list[str] = Field(default_factory=list)
    affected_principals: int = 0
    warnings: list[str] = Field(default_factory=list)


class DeletionCheck(BaseModel):
    allowed: bool
    reason: Literal["users_assigned", "system_role"] | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
