"""Pure validation of proposed access matrix changes.

Nothing here mutates state, and identical inputs always produce an
identical ``ValidationResult``: issues are ordered by dependency rank,
never by set iteration order.  The Matrix Engine calls this before every
commit and the preview engine reuses it for dry runs.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

from rolematrix.core.graph import FeatureGraph
from rolematrix.core.matrix import MatrixView, OverlayMatrix
from rolematrix.core.models import (
    CellChange,
    IssueCode,
    Role,
    ValidationIssue,
    ValidationResult,
)


def affected_principals_warning(role: Role) -> str | None:
    count = role.assigned_principal_count
    if count <= 0:
        return None
    return f"This will affect {count} user{'s' if count != 1 else ''} holding {role.name}"


def validate_change(
    role: Role,
    feature_id: str,
    new_granted: bool,
    matrix: MatrixView,
    graph: FeatureGraph,
) -> ValidationResult:
    """Check that setting (role, feature) to *new_granted* keeps the invariant.

    Enabling requires every transitive prerequisite to be granted already;
    each missing one is reported.  Disabling requires no transitive
    dependent to still be granted; each active one is reported so the
    caller can cascade instead.  Setting a cell to its current value is
    always valid.

    Raises ``FeatureNotFoundError`` / ``RoleNotFoundError`` for unknown ids.
    """
    feature = graph.get(feature_id)
    current = matrix.is_granted(role.id, feature_id)
    if current == new_granted:
        return ValidationResult()

    errors: list[ValidationIssue] = []
    warnings: list[str] = []

    if new_granted:
        if feature.admin_only and not role.is_admin:
            errors.append(
                ValidationIssue(
                    code=IssueCode.ADMIN_ONLY,
                    role_id=role.id,
                    feature_id=feature.id,
                    message=f"{feature.name} can only be enabled for administrator roles",
                )
            )
        for ancestor_id in graph.sort(graph.all_ancestors(feature_id)):
            if matrix.is_granted(role.id, ancestor_id):
                continue
            ancestor = graph.get(ancestor_id)
            errors.append(
                ValidationIssue(
                    code=IssueCode.MISSING_PREREQUISITE,
                    role_id=role.id,
                    feature_id=feature.id,
                    related_feature_id=ancestor_id,
                    message=f"{feature.name} requires {ancestor.name} ({ancestor_id})",
                )
            )
    else:
        if feature.is_core:
            errors.append(
                ValidationIssue(
                    code=IssueCode.CORE_FEATURE,
                    role_id=role.id,
                    feature_id=feature.id,
                    message=f"{feature.name} is core functionality and cannot be disabled",
                )
            )
        for descendant_id in graph.sort(graph.all_descendants(feature_id)):
            if not matrix.is_granted(role.id, descendant_id):
                continue
            descendant = graph.get(descendant_id)
            errors.append(
                ValidationIssue(
                    code=IssueCode.ACTIVE_DEPENDENT,
                    role_id=role.id,
                    feature_id=feature.id,
                    related_feature_id=descendant_id,
                    message=f"{descendant.name} ({descendant_id}) still requires {feature.name}",
                )
            )

    warning = affected_principals_warning(role)
    if warning:
        warnings.append(warning)
    return ValidationResult.from_issues(errors, warnings)


def find_violations(
    role_id: str,
    granted: Iterable[str],
    graph: FeatureGraph,
) -> list[ValidationIssue]:
    """Granted features of a row whose prerequisites are not all granted."""
    granted_set = set(granted)
    issues: list[ValidationIssue] = []
    for feature_id in graph.sort(granted_set):
        feature = graph.get(feature_id)
        for ancestor_id in graph.sort(graph.all_ancestors(feature_id) - granted_set):
            issues.append(
                ValidationIssue(
                    code=IssueCode.MISSING_PREREQUISITE,
                    role_id=role_id,
                    feature_id=feature_id,
                    related_feature_id=ancestor_id,
                    message=f"{feature.name} requires {graph.get(ancestor_id).name} ({ancestor_id})",
                )
            )
    return issues


def plan_batch(
    changes: Sequence[CellChange],
    matrix: MatrixView,
    graph: FeatureGraph,
    role_lookup: Callable[[str], Role],
) -> tuple[ValidationResult, OverlayMatrix]:
    """Validate *changes* in order against the state left by the earlier ones.

    Each valid change is written to an overlay of *matrix* before the next
    change is checked, so a batch may grant a prerequisite and then its
    dependent.  Invalid changes are reported and skipped; the caller must
    reject the whole batch when the result is invalid.
    """
    working = OverlayMatrix(matrix)
    errors: list[ValidationIssue] = []
    warnings: list[str] = []
    for change in changes:
        role = role_lookup(change.role_id)
        result = validate_change(role, change.feature_id, change.granted, working, graph)
        if result.is_valid:
            working.set(change.role_id, change.feature_id, change.granted)
        errors.extend(result.errors)
        warnings.extend(w for w in result.warnings if w not in warnings)
    return ValidationResult.from_issues(errors, warnings), working
