"""Access control service: wires catalog, graph, matrix, engine and preview.

This is the surface administrative tools and identity checks talk to.
Role mutations and matrix mutations share the engine's lock so no two
mutations interleave inside one process.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from rolematrix.config import Settings, settings
from rolematrix.core.catalog import RoleCatalog
from rolematrix.core.engine import MatrixEngine, Subscriber
from rolematrix.core.graph import FeatureGraph
from rolematrix.core.lifecycle import RoleLifecycleGuard
from rolematrix.core.matrix import AccessMatrix
from rolematrix.core.models import (
    BulkAction,
    BulkImpact,
    CellChange,
    DeletionCheck,
    Feature,
    FeatureCategory,
    MatrixResult,
    Permission,
    Role,
    RolePatch,
    RolePreview,
    ValidationIssue,
    ValidationResult,
)
from rolematrix.core.preview import Hypothetical, PreviewEngine
from rolematrix.core.validator import find_violations
from rolematrix.storage.base import Persistence

logger = logging.getLogger("rolematrix.service")


class AccessControlService:
    """Facade over the feature access control engine."""

    def __init__(self, persistence: Persistence, *, config: Settings = settings) -> None:
        self.persistence = persistence
        self.config = config
        self.guard = RoleLifecycleGuard()
        self._graph: FeatureGraph | None = None
        self._catalog: RoleCatalog | None = None
        self._engine: MatrixEngine | None = None
        self._preview: PreviewEngine | None = None
        self._categories: list[FeatureCategory] = []
        self._subscribers: list[Subscriber] = []

    async def initialize(self) -> None:
        """Load catalog and matrix from persistence and build the engine.

        Raises ``CyclicDependencyError`` or ``CatalogError`` when the
        feature configuration is invalid; nothing is usable until fixed.
        """
        await self._load()

    async def refresh(self) -> None:
        """Re-read everything from persistence, e.g. after a concurrency conflict.

        Holds the current engine's lock while reloading so an in-flight
        mutation finishes before its state is replaced.
        """
        if self._engine is None:
            await self._load()
            return
        async with self._engine.lock:
            await self._load()

    async def _load(self) -> None:
        snapshot = await self.persistence.load_catalog()
        graph = FeatureGraph(snapshot.features, snapshot.dependency_edges)
        catalog = RoleCatalog(
            self.persistence,
            snapshot.roles,
            snapshot.permissions,
            graph.feature_ids,
            guard=self.guard,
            config=self.config,
        )
        matrix = AccessMatrix.from_cells(
            graph.feature_ids,
            [r.id for r in snapshot.roles],
            await self.persistence.load_matrix(),
            await self.persistence.load_revisions(),
        )
        engine = MatrixEngine(graph, matrix, self.persistence, catalog.get_role)
        for callback in self._subscribers:
            engine.subscribe(callback)

        self._graph = graph
        self._catalog = catalog
        self._engine = engine
        self._preview = PreviewEngine(graph, matrix, catalog.get_role, config=self.config)
        self._categories = list(snapshot.categories)

        violations = self.invariant_violations()
        if violations:
            logger.warning(
                "Loaded matrix has %d cells without their prerequisites",
                len(violations),
                extra={"reason": "stored_matrix_inconsistent"},
            )
        logger.info(
            "Access control initialized: %d features, %d roles",
            len(graph),
            len(snapshot.roles),
        )

    # -- component access -----------------------------------------------

    @property
    def graph(self) -> FeatureGraph:
        if self._graph is None:
            raise RuntimeError("Service not initialized. Call initialize() first.")
        return self._graph

    @property
    def catalog(self) -> RoleCatalog:
        if self._catalog is None:
            raise RuntimeError("Service not initialized. Call initialize() first.")
        return self._catalog

    @property
    def engine(self) -> MatrixEngine:
        if self._engine is None:
            raise RuntimeError("Service not initialized. Call initialize() first.")
        return self._engine

    @property
    def preview(self) -> PreviewEngine:
        if self._preview is None:
            raise RuntimeError("Service not initialized. Call initialize() first.")
        return self._preview

    @property
    def matrix(self) -> AccessMatrix:
        return self.engine.matrix

    # -- catalog --------------------------------------------------------

    def list_roles(self) -> list[Role]:
        return self.catalog.list_roles()

    def get_role(self, role_id: str) -> Role:
        return self.catalog.get_role(role_id)

    def list_permissions(self) -> list[Permission]:
        return self.catalog.list_permissions()

    def list_features(self) -> list[Feature]:
        return self.graph.features

    def list_categories(self) -> list[FeatureCategory]:
        return list(self._categories)

    async def create_role(
        self,
        name: str,
        description: str,
        permissions: Sequence[str],
        *,
        is_admin: bool = False,
        is_system_role: bool = False,
    ) -> Role:
        async with self.engine.lock:
            role = await self.catalog.create_role(
                name,
                description,
                permissions,
                is_admin=is_admin,
                is_system_role=is_system_role,
            )
            self.engine.attach_role(role.id)
        return role

    async def update_role(self, role_id: str, patch: RolePatch) -> Role:
        async with self.engine.lock:
            return await self.catalog.update_role(role_id, patch)

    async def delete_role(self, role_id: str) -> Role:
        async with self.engine.lock:
            role = await self.catalog.delete_role(role_id)
            self.engine.detach_role(role_id)
        return role

    async def set_role_permission(self, role_id: str, permission_id: str, granted: bool) -> Role:
        async with self.engine.lock:
            return await self.catalog.set_role_permission(role_id, permission_id, granted)

    async def adjust_principal_count(self, role_id: str, delta: int) -> Role:
        async with self.engine.lock:
            return await self.catalog.adjust_principal_count(role_id, delta)

    def can_delete(self, role_id: str) -> DeletionCheck:
        return self.guard.can_delete(self.catalog.get_role(role_id))

    # -- matrix ---------------------------------------------------------

    def has_access(self, role_id: str, feature_id: str) -> bool:
        return self.engine.has_access(role_id, feature_id)

    def accessible_features(self, role_id: str, application_id: str | None = None) -> list[str]:
        return self.engine.accessible_features(role_id, application_id)

    def validate_change(self, role_id: str, feature_id: str, granted: bool) -> ValidationResult:
        return self.engine.validate(role_id, feature_id, granted)

    async def toggle_feature(
        self, role_id: str, feature_id: str, granted: bool, *, expected_revision: int | None = None
    ) -> MatrixResult:
        return await self.engine.toggle_feature(
            role_id, feature_id, granted, expected_revision=expected_revision
        )

    async def bulk_update(
        self, changes: Sequence[CellChange], *, expected_revisions: Mapping[str, int] | None = None
    ) -> MatrixResult:
        return await self.engine.bulk_update(changes, expected_revisions=expected_revisions)

    async def cascade_disable(
        self, role_id: str, feature_id: str, *, expected_revision: int | None = None
    ) -> MatrixResult:
        return await self.engine.cascade_disable(
            role_id, feature_id, expected_revision=expected_revision
        )

    async def cascade_enable(
        self, role_id: str, feature_id: str, *, expected_revision: int | None = None
    ) -> MatrixResult:
        return await self.engine.cascade_enable(
            role_id, feature_id, expected_revision=expected_revision
        )

    async def bulk_category_update(
        self,
        role_ids: Sequence[str],
        category_id: str,
        action: BulkAction | str,
        *,
        expected_revisions: Mapping[str, int] | None = None,
    ) -> MatrixResult:
        return await self.engine.bulk_category_update(
            role_ids, category_id, action, expected_revisions=expected_revisions
        )

    def subscribe(self, callback: Subscriber) -> None:
        """Register a commit listener that survives ``refresh()``."""
        self._subscribers.append(callback)
        if self._engine is not None:
            self._engine.subscribe(callback)

    def invariant_violations(self) -> list[ValidationIssue]:
        """Granted cells whose prerequisites are missing in the live matrix."""
        issues: list[ValidationIssue] = []
        for role_id in self.matrix.roles():
            issues.extend(find_violations(role_id, self.matrix.granted_features(role_id), self.graph))
        return issues

    # -- preview --------------------------------------------------------

    def preview_role(self, role_id: str, hypothetical: Hypothetical | None = None) -> RolePreview:
        return self.preview.preview_role(role_id, hypothetical)

    def preview_bulk(self, changes: Sequence[CellChange]) -> BulkImpact:
        return self.preview.preview_bulk(changes)

    def preview_category_update(
        self, role_ids: Sequence[str], category_id: str, action: BulkAction | str
    ) -> BulkImpact:
        return self.preview.preview_bulk(self.engine.category_changes(role_ids, category_id, action))
