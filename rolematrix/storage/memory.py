"""In-memory persistence backend for tests, demos and the CLI."""

from __future__ import annotations

from collections.abc import Sequence

from rolematrix.core.models import AccessCell, CatalogSnapshot, CommitOutcome, Role
from rolematrix.exceptions import ConcurrentModificationError, RoleNotFoundError


class InMemoryPersistence:
    """Dict-backed implementation of the ``Persistence`` protocol."""

    def __init__(self, snapshot: CatalogSnapshot | None = None) -> None:
        self._catalog = CatalogSnapshot()
        self._roles: dict[str, Role] = {}
        self._cells: dict[tuple[str, str], bool] = {}
        self._revisions: dict[str, int] = {}
        self.commit_count = 0
        if snapshot is not None:
            self._store_catalog(snapshot)

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def _store_catalog(self, snapshot: CatalogSnapshot) -> None:
        self._catalog = snapshot.model_copy(update={"roles": []}, deep=True)
        feature_ids = [f.id for f in snapshot.features]
        for role in snapshot.roles:
            self._store_role(role, feature_ids)

    def _store_role(self, role: Role, seed_features: Sequence[str]) -> None:
        is_new = role.id not in self._roles
        self._roles[role.id] = role.model_copy(deep=True)
        if is_new:
            self._revisions[role.id] = 0
            for feature_id in seed_features:
                self._cells[(role.id, feature_id)] = False

    async def load_catalog(self) -> CatalogSnapshot:
        snapshot = self._catalog.model_copy(deep=True)
        snapshot.roles = [r.model_copy(deep=True) for r in self._roles.values()]
        return snapshot

    async def save_catalog(self, snapshot: CatalogSnapshot) -> None:
        self._store_catalog(snapshot)

    async def load_matrix(self) -> list[AccessCell]:
        return [
            AccessCell(role_id=rid, feature_id=fid, granted=granted)
            for (rid, fid), granted in self._cells.items()
        ]

    async def load_revisions(self) -> dict[str, int]:
        return dict(self._revisions)

    async def commit_matrix_delta(
        self, cells: Sequence[AccessCell], expected_revisions: dict[str, int]
    ) -> CommitOutcome:
        for role_id, expected in expected_revisions.items():
            if role_id not in self._revisions:
                raise RoleNotFoundError(role_id)
            actual = self._revisions[role_id]
            if actual != expected:
                raise ConcurrentModificationError(role_id, expected, actual)

        for cell in cells:
            self._cells[(cell.role_id, cell.feature_id)] = cell.granted
        new_revisions = {rid: rev + 1 for rid, rev in expected_revisions.items()}
        self._revisions.update(new_revisions)
        self.commit_count += 1
        return CommitOutcome(success=True, new_revisions=new_revisions)

    async def persist_role(self, role: Role, seed_features: Sequence[str] = ()) -> None:
        self._store_role(role, seed_features)

    async def delete_role_record(self, role_id: str) -> None:
        self._roles.pop(role_id, None)
        self._revisions.pop(role_id, None)
        for key in [k for k in self._cells if k[0] == role_id]:
            del self._cells[key]

    def set_revision(self, role_id: str, revision: int) -> None:
        """Simulate a commit made by another engine instance."""
        self._revisions[role_id] = revision

    async def grant_cells(self, role_id: str, feature_ids: Sequence[str]) -> None:
        """Write granted cells without a revision bump (catalog seeding only)."""
        for feature_id in feature_ids:
            self._cells[(role_id, feature_id)] = True
