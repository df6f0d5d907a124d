"""Persistence collaborator protocol and backend factory.

The engine treats storage as a transactional key-value surface: it loads
the catalog and matrix once, then pushes matrix deltas guarded by the
per-role revision each delta was based on.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from rolematrix.config import settings
from rolematrix.core.models import AccessCell, CatalogSnapshot, CommitOutcome, Role


@runtime_checkable
class Persistence(Protocol):
    """Protocol that every storage backend implements."""

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def load_catalog(self) -> CatalogSnapshot:
        """Roles, permissions, features, categories and dependency edges."""
        ...

    async def save_catalog(self, snapshot: CatalogSnapshot) -> None:
        """Replace the feature configuration and upsert permissions and roles."""
        ...

    async def load_matrix(self) -> list[AccessCell]: ...

    async def load_revisions(self) -> dict[str, int]: ...

    async def commit_matrix_delta(
        self, cells: Sequence[AccessCell], expected_revisions: dict[str, int]
    ) -> CommitOutcome:
        """Apply *cells* atomically if every role is still at its expected revision.

        Each role in *expected_revisions* moves to ``expected + 1``.  Raises
        ``ConcurrentModificationError`` without writing anything when a
        stored revision differs.
        """
        ...

    async def persist_role(self, role: Role, seed_features: Sequence[str] = ()) -> None:
        """Upsert a role; *seed_features* creates its all-denied matrix row."""
        ...

    async def delete_role_record(self, role_id: str) -> None:
        """Remove a role together with its matrix row and revision."""
        ...

    async def grant_cells(self, role_id: str, feature_ids: Sequence[str]) -> None:
        """Seed granted cells from configuration, bypassing revisions."""
        ...


def create_persistence(backend: str | None = None, *, db_path: str | None = None) -> Persistence:
    """Create a storage backend by name (``memory`` or ``sqlite``).

    Checks RM_STORAGE directly as well, so tests can switch backends
    after the settings singleton was built.
    """
    backend = (backend or os.environ.get("RM_STORAGE", settings.storage)).lower()
    if backend == "memory":
        from rolematrix.storage.memory import InMemoryPersistence

        return InMemoryPersistence()

    if backend == "sqlite":
        from rolematrix.storage.database import Database

        return Database(db_path or os.environ.get("RM_DB_PATH", settings.db_path))

    msg = f"Unknown storage backend: {backend}"
    raise ValueError(msg)
