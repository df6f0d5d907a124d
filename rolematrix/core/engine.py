"""Matrix engine: the only writer of the access matrix.

Every mutation is planned against an overlay, validated change by change,
checked against the caller's base revision and only then pushed to the
persistence collaborator and applied in memory.  A rejected or failed
operation leaves both copies of the matrix exactly as they were.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence

from rolematrix.core.graph import FeatureGraph
from rolematrix.core.matrix import AccessMatrix
from rolematrix.core.models import (
    BulkAction,
    CellChange,
    MatrixEvent,
    MatrixResult,
    Role,
    ValidationResult,
)
from rolematrix.core.validator import plan_batch, validate_change
from rolematrix.exceptions import (
    CategoryNotFoundError,
    ConcurrentModificationError,
    StorageError,
)
from rolematrix.storage.base import Persistence

logger = logging.getLogger("rolematrix.engine")

Subscriber = Callable[[MatrixEvent], None]


class MatrixEngine:
    """Validated, versioned, all-or-nothing writes to an ``AccessMatrix``."""

    def __init__(
        self,
        graph: FeatureGraph,
        matrix: AccessMatrix,
        persistence: Persistence,
        role_lookup: Callable[[str], Role],
    ) -> None:
        self.graph = graph
        self.matrix = matrix
        self.persistence = persistence
        self.role_lookup = role_lookup
        self.lock = asyncio.Lock()
        self._subscribers: list[Subscriber] = []

    # -- access checks --------------------------------------------------

    def has_access(self, role_id: str, feature_id: str) -> bool:
        return self.matrix.is_granted(role_id, feature_id)

    def accessible_features(self, role_id: str, application_id: str | None = None) -> list[str]:
        """Granted feature ids for a role in dependency order."""
        granted = self.matrix.granted_features(role_id)
        return [
            fid
            for fid in self.graph.sort(granted)
            if application_id is None or self.graph.get(fid).application_id == application_id
        ]

    def revision(self, role_id: str) -> int:
        return self.matrix.revision(role_id)

    def validate(self, role_id: str, feature_id: str, granted: bool) -> ValidationResult:
        """Validate one change against the live matrix without applying it."""
        return validate_change(self.role_lookup(role_id), feature_id, granted, self.matrix, self.graph)

    # -- subscribers ----------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for commit events; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self, event: MatrixEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                # The commit already happened; a broken listener must not hide it.
                logger.exception("Matrix subscriber %r failed", callback)

    # -- row lifecycle (driven by role creation/deletion) --------------

    def attach_role(self, role_id: str) -> None:
        """Add an all-denied row for a role the catalog just persisted."""
        if not self.matrix.has_role(role_id):
            self.matrix._add_row(role_id)

    def detach_role(self, role_id: str) -> None:
        self.matrix._drop_row(role_id)

    # -- mutations ------------------------------------------------------

    async def toggle_feature(
        self,
        role_id: str,
        feature_id: str,
        granted: bool,
        *,
        expected_revision: int | None = None,
    ) -> MatrixResult:
        """Set a single cell."""
        expected = None if expected_revision is None else {role_id: expected_revision}
        return await self._commit(
            [CellChange(role_id=role_id, feature_id=feature_id, granted=granted)],
            expected,
            operation="toggle_feature",
        )

    async def bulk_update(
        self,
        changes: Sequence[CellChange],
        *,
        expected_revisions: Mapping[str, int] | None = None,
    ) -> MatrixResult:
        """Apply *changes* in order as one transaction.

        Each change is validated against the state produced by the changes
        before it.  One invalid change rejects the whole batch.
        """
        return await self._commit(changes, expected_revisions, operation="bulk_update")

    async def cascade_disable(
        self,
        role_id: str,
        feature_id: str,
        *,
        expected_revision: int | None = None,
    ) -> MatrixResult:
        """Disable a feature and every granted feature that depends on it."""
        targets = self.graph.all_descendants(feature_id) | {feature_id}
        changes = [CellChange.revoke(role_id, fid) for fid in reversed(self.graph.sort(targets))]
        expected = None if expected_revision is None else {role_id: expected_revision}
        return await self._commit(changes, expected, operation="cascade_disable")

    async def cascade_enable(
        self,
        role_id: str,
        feature_id: str,
        *,
        expected_revision: int | None = None,
    ) -> MatrixResult:
        """Enable a feature together with all of its missing prerequisites."""
        targets = self.graph.all_ancestors(feature_id) | {feature_id}
        changes = [CellChange.grant(role_id, fid) for fid in self.graph.sort(targets)]
        expected = None if expected_revision is None else {role_id: expected_revision}
        return await self._commit(changes, expected, operation="cascade_enable")

    def category_changes(
        self, role_ids: Iterable[str], category_id: str, action: BulkAction | str
    ) -> list[CellChange]:
        """Cell changes that enable or disable a whole category for many roles.

        Enabling pulls in prerequisites outside the category; disabling
        cascades to dependents outside it.
        """
        action = BulkAction(action)
        members = [f.id for f in self.graph.features if f.category == category_id]
        if not members:
            raise CategoryNotFoundError(category_id)

        targets: set[str] = set(members)
        for fid in members:
            if action is BulkAction.ENABLE:
                targets |= self.graph.all_ancestors(fid)
            else:
                targets |= self.graph.all_descendants(fid)

        ordered = self.graph.sort(targets)
        if action is BulkAction.DISABLE:
            ordered.reverse()
        granted = action is BulkAction.ENABLE
        return [
            CellChange(role_id=role_id, feature_id=fid, granted=granted)
            for role_id in role_ids
            for fid in ordered
        ]

    async def bulk_category_update(
        self,
        role_ids: Sequence[str],
        category_id: str,
        action: BulkAction | str,
        *,
        expected_revisions: Mapping[str, int] | None = None,
    ) -> MatrixResult:
        changes = self.category_changes(role_ids, category_id, action)
        return await self._commit(changes, expected_revisions, operation="bulk_category_update")

    # -- commit path ----------------------------------------------------

    def _check_revisions(self, role_ids: Iterable[str], expected: Mapping[str, int]) -> dict[str, int]:
        """Base revision per touched role; raises if the caller's view is stale.

        Only roles in *role_ids* are checked. Entries in *expected* for other
        roles are ignored, so a caller may pass its whole revision map.
        """
        bases: dict[str, int] = {}
        for role_id in role_ids:
            current = self.matrix.revision(role_id)
            base = expected.get(role_id, current)
            if base != current:
                logger.warning(
                    "Stale revision for role %s",
                    role_id,
                    extra={"role_id": role_id, "revision": current},
                )
                raise ConcurrentModificationError(role_id, base, current)
            bases[role_id] = base
        return bases

    async def _commit(
        self,
        changes: Sequence[CellChange],
        expected_revisions: Mapping[str, int] | None,
        *,
        operation: str,
    ) -> MatrixResult:
        async with self.lock:
            touched = list(dict.fromkeys(c.role_id for c in changes))
            for role_id in touched:
                self.role_lookup(role_id)
            bases = self._check_revisions(touched, expected_revisions or {})

            validation, working = plan_batch(changes, self.matrix, self.graph, self.role_lookup)
            if not validation.is_valid:
                logger.warning(
                    "%s rejected: %s",
                    operation,
                    "; ".join(e.message for e in validation.errors),
                    extra={"change_count": len(changes), "reason": "validation"},
                )
                return MatrixResult.rejected(validation.errors, validation.warnings)

            delta = working.diff()
            if not delta:
                return MatrixResult.committed([], bases, validation.warnings)

            changed_roles = list(dict.fromkeys(c.role_id for c in delta))
            outcome = await self.persistence.commit_matrix_delta(
                delta, {rid: bases[rid] for rid in changed_roles}
            )
            if not outcome.success:
                raise StorageError(f"{operation} could not be persisted")

            self.matrix._apply(delta, outcome.new_revisions)
            revisions = {**bases, **outcome.new_revisions}
            for role_id in changed_roles:
                logger.info(
                    "%s committed for role %s",
                    operation,
                    role_id,
                    extra={
                        "role_id": role_id,
                        "revision": revisions[role_id],
                        "change_count": sum(1 for c in delta if c.role_id == role_id),
                    },
                )

        result = MatrixResult.committed(list(delta), revisions, validation.warnings)
        self._publish(
            MatrixEvent(changes=list(delta), revisions=dict(revisions), operation=operation)
        )
        return result
