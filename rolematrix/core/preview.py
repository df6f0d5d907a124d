"""Read-only simulation of what a role would see.

Previews are computed from the catalog, the dependency graph and either
the live matrix or a hypothetical overlay of it.  Nothing here writes to
the matrix; repeated calls with the same inputs return equal results.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence

from rolematrix.config import Settings, settings
from rolematrix.core.graph import FeatureGraph
from rolematrix.core.matrix import AccessMatrix, MatrixView, OverlayMatrix
from rolematrix.core.models import (
    AccessibilityLevel,
    BulkImpact,
    CellChange,
    Role,
    RolePreview,
)
from rolematrix.core.validator import find_violations, plan_batch

Hypothetical = Mapping[str, bool] | MatrixView


class PreviewEngine:
    def __init__(
        self,
        graph: FeatureGraph,
        matrix: AccessMatrix,
        role_lookup: Callable[[str], Role],
        *,
        config: Settings = settings,
    ) -> None:
        self.graph = graph
        self.matrix = matrix
        self.role_lookup = role_lookup
        self.config = config

    def _view(self, role_id: str, hypothetical: Hypothetical | None) -> MatrixView:
        if hypothetical is None:
            return self.matrix
        if isinstance(hypothetical, Mapping):
            return OverlayMatrix(
                self.matrix, {(role_id, fid): value for fid, value in hypothetical.items()}
            )
        return hypothetical

    def preview_role(self, role_id: str, hypothetical: Hypothetical | None = None) -> RolePreview:
        """Navigable surface of *role_id*.

        *hypothetical* is either a ``{feature_id: granted}`` overlay of the
        role's row or a complete matrix view.  Features whose prerequisites
        are missing in that state are reported, not shown.
        """
        self.role_lookup(role_id)
        view = self._view(role_id, hypothetical)
        granted = view.granted_features(role_id)

        violations = find_violations(role_id, granted, self.graph)
        blocked = {v.feature_id for v in violations}
        available = [fid for fid in self.graph.sort(granted) if fid not in blocked]

        navigation: dict[str, list[str]] = {}
        for fid in available:
            navigation.setdefault(self.graph.get(fid).category, []).append(fid)
        apps = sorted({self.graph.get(fid).application_id for fid in available})

        warnings = [f"{v.message} and is not available" for v in violations]
        if len(available) < self.config.limited_access_threshold:
            warnings.append("Limited feature access may impact user experience")
        nav_feature = self.config.navigation_feature
        if nav_feature in self.graph and nav_feature not in available:
            warnings.append("Navigation disabled - users may have difficulty accessing features")

        if available and len(available) == len(self.graph):
            level = AccessibilityLevel.FULL
        elif len(available) < self.config.limited_access_threshold:
            level = AccessibilityLevel.LIMITED
        else:
            level = AccessibilityLevel.STANDARD

        return RolePreview(
            role_id=role_id,
            available_features=available,
            navigable_apps=apps,
            navigation=navigation,
            feature_count=len(available),
            accessibility_level=level,
            warnings=warnings,
            hypothetical=hypothetical is not None,
        )

    def preview_bulk(self, changes: Sequence[CellChange]) -> BulkImpact:
        """Dry-run a batch: what would be validated, changed and affected."""
        validation, working = plan_batch(changes, self.matrix, self.graph, self.role_lookup)
        delta = working.diff()
        roles = list(dict.fromkeys(c.role_id for c in delta))
        principals = sum(self.role_lookup(rid).assigned_principal_count for rid in roles)

        warnings = list(validation.warnings)
        if principals > self.config.bulk_impact_warning_threshold:
            warnings.append(f"This will affect {principals} users across {len(roles)} roles")

        return BulkImpact(
            validation=validation,
            cells_changed=len(delta),
            roles_affected=roles,
            affected_principals=principals,
            warnings=warnings,
        )
