"""Async SQLite storage layer for the access matrix.

Uses aiosqlite for async access. Every multi-statement write runs inside
an explicit ``BEGIN IMMEDIATE`` transaction so a failed revision check
or a crash mid-write leaves the stored matrix untouched.
"""

from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import aiosqlite

from rolematrix.core.models import (
    AccessCell,
    CatalogSnapshot,
    CommitOutcome,
    DependencyEdge,
    Feature,
    FeatureCategory,
    Permission,
    Role,
)
from rolematrix.exceptions import ConcurrentModificationError, RoleNotFoundError, StorageError

DEFAULT_DB_PATH = Path(os.environ.get("RM_DB_PATH", "rolematrix.db"))

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS roles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    display_name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    permissions TEXT NOT NULL DEFAULT '[]',
    is_system_role INTEGER NOT NULL DEFAULT 0,
    is_admin INTEGER NOT NULL DEFAULT 0,
    assigned_principal_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS permissions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT 'general'
);

CREATE TABLE IF NOT EXISTS feature_categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS features (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    application_id TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'general',
    dependencies TEXT NOT NULL DEFAULT '[]',
    is_core INTEGER NOT NULL DEFAULT 0,
    admin_only INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS dependency_edges (
    source TEXT NOT NULL,
    target TEXT NOT NULL,
    PRIMARY KEY (source, target)
);

CREATE TABLE IF NOT EXISTS access_cells (
    role_id TEXT NOT NULL,
    feature_id TEXT NOT NULL,
    granted INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (role_id, feature_id)
);

CREATE TABLE IF NOT EXISTS role_revisions (
    role_id TEXT PRIMARY KEY,
    revision INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_access_cells_feature
    ON access_cells (feature_id);

CREATE UNIQUE INDEX IF NOT EXISTS idx_roles_name_nocase
    ON roles (name COLLATE NOCASE);
"""


class Database:
    """Async SQLite implementation of the ``Persistence`` protocol."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        # Autocommit mode: transactions are opened explicitly below.
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA_SQL)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        await self.db.execute("BEGIN IMMEDIATE")
        try:
            yield self.db
        except BaseException:
            await self.db.execute("ROLLBACK")
            raise
        await self.db.execute("COMMIT")

    # --- Catalog ---

    async def load_catalog(self) -> CatalogSnapshot:
        cursor = await self.db.execute("SELECT * FROM roles ORDER BY created_at ASC, id ASC")
        roles = [self._row_to_role(r) for r in await cursor.fetchall()]

        cursor = await self.db.execute("SELECT * FROM permissions ORDER BY id ASC")
        permissions = [
            Permission(
                id=r["id"], name=r["name"], description=r["description"], category=r["category"]
            )
            for r in await cursor.fetchall()
        ]

        cursor = await self.db.execute("SELECT * FROM feature_categories ORDER BY id ASC")
        categories = [
            FeatureCategory(id=r["id"], name=r["name"], description=r["description"])
            for r in await cursor.fetchall()
        ]

        cursor = await self.db.execute("SELECT * FROM features ORDER BY id ASC")
        features = [
            Feature(
                id=r["id"],
                name=r["name"],
                description=r["description"],
                application_id=r["application_id"],
                category=r["category"],
                dependencies=json.loads(r["dependencies"]),
                is_core=bool(r["is_core"]),
                admin_only=bool(r["admin_only"]),
            )
            for r in await cursor.fetchall()
        ]

        cursor = await self.db.execute("SELECT source, target FROM dependency_edges")
        edges = [
            DependencyEdge(source=r["source"], target=r["target"]) for r in await cursor.fetchall()
        ]

        return CatalogSnapshot(
            roles=roles,
            permissions=permissions,
            features=features,
            categories=categories,
            dependency_edges=edges,
        )

    async def save_catalog(self, snapshot: CatalogSnapshot) -> None:
        async with self._transaction() as db:
            await db.execute("DELETE FROM features")
            await db.execute("DELETE FROM feature_categories")
            await db.execute("DELETE FROM dependency_edges")
            await db.executemany(
                """INSERT INTO features
                   (id, name, description, application_id, category, dependencies, is_core, admin_only)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        f.id,
                        f.name,
                        f.description,
                        f.application_id,
                        f.category,
                        json.dumps(f.dependencies),
                        int(f.is_core),
                        int(f.admin_only),
                    )
                    for f in snapshot.features
                ],
            )
            await db.executemany(
                "INSERT INTO feature_categories (id, name, description) VALUES (?, ?, ?)",
                [(c.id, c.name, c.description) for c in snapshot.categories],
            )
            await db.executemany(
                "INSERT INTO dependency_edges (source, target) VALUES (?, ?)",
                [(e.source, e.target) for e in snapshot.dependency_edges],
            )
            await db.executemany(
                "INSERT OR REPLACE INTO permissions (id, name, description, category) "
                "VALUES (?, ?, ?, ?)",
                [(p.id, p.name, p.description, p.category) for p in snapshot.permissions],
            )
            feature_ids = [f.id for f in snapshot.features]
            for role in snapshot.roles:
                await self._write_role(db, role, feature_ids)
            # Every role row must cover every configured feature.
            await db.execute(
                """INSERT OR IGNORE INTO access_cells (role_id, feature_id, granted)
                   SELECT roles.id, features.id, 0 FROM roles CROSS JOIN features"""
            )

    # --- Matrix ---

    async def load_matrix(self) -> list[AccessCell]:
        cursor = await self.db.execute(
            "SELECT role_id, feature_id, granted FROM access_cells ORDER BY role_id, feature_id"
        )
        rows = await cursor.fetchall()
        return [
            AccessCell(role_id=r["role_id"], feature_id=r["feature_id"], granted=bool(r["granted"]))
            for r in rows
        ]

    async def load_revisions(self) -> dict[str, int]:
        cursor = await self.db.execute("SELECT role_id, revision FROM role_revisions")
        return {r["role_id"]: r["revision"] for r in await cursor.fetchall()}

    async def commit_matrix_delta(
        self, cells: Sequence[AccessCell], expected_revisions: dict[str, int]
    ) -> CommitOutcome:
        new_revisions: dict[str, int] = {}
        async with self._transaction() as db:
            for role_id, expected in expected_revisions.items():
                cursor = await db.execute(
                    "SELECT revision FROM role_revisions WHERE role_id = ?", (role_id,)
                )
                row = await cursor.fetchone()
                if row is None:
                    raise RoleNotFoundError(role_id)
                if row["revision"] != expected:
                    raise ConcurrentModificationError(role_id, expected, row["revision"])
                new_revisions[role_id] = expected + 1

            await db.executemany(
                "INSERT OR REPLACE INTO access_cells (role_id, feature_id, granted) VALUES (?, ?, ?)",
                [(c.role_id, c.feature_id, int(c.granted)) for c in cells],
            )
            await db.executemany(
                "UPDATE role_revisions SET revision = ? WHERE role_id = ?",
                [(rev, rid) for rid, rev in new_revisions.items()],
            )
        return CommitOutcome(success=True, new_revisions=new_revisions)

    # --- Roles ---

    async def persist_role(self, role: Role, seed_features: Sequence[str] = ()) -> None:
        try:
            async with self._transaction() as db:
                await self._write_role(db, role, seed_features)
        except aiosqlite.IntegrityError as exc:
            raise StorageError(f"Could not persist role {role.id}: {exc}") from exc

    async def _write_role(
        self, db: aiosqlite.Connection, role: Role, seed_features: Sequence[str]
    ) -> None:
        await db.execute(
            """INSERT INTO roles
               (id, name, display_name, description, permissions, is_system_role, is_admin,
                assigned_principal_count, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 name = excluded.name,
                 display_name = excluded.display_name,
                 description = excluded.description,
                 permissions = excluded.permissions,
                 is_system_role = excluded.is_system_role,
                 is_admin = excluded.is_admin,
                 assigned_principal_count = excluded.assigned_principal_count,
                 updated_at = excluded.updated_at""",
            (
                role.id,
                role.name,
                role.display_name,
                role.description,
                json.dumps(role.permissions),
                int(role.is_system_role),
                int(role.is_admin),
                role.assigned_principal_count,
                role.created_at.isoformat(),
                role.updated_at.isoformat(),
            ),
        )
        await db.execute(
            "INSERT OR IGNORE INTO role_revisions (role_id, revision) VALUES (?, 0)", (role.id,)
        )
        await db.executemany(
            "INSERT OR IGNORE INTO access_cells (role_id, feature_id, granted) VALUES (?, ?, 0)",
            [(role.id, fid) for fid in seed_features],
        )

    async def delete_role_record(self, role_id: str) -> None:
        async with self._transaction() as db:
            await db.execute("DELETE FROM access_cells WHERE role_id = ?", (role_id,))
            await db.execute("DELETE FROM role_revisions WHERE role_id = ?", (role_id,))
            await db.execute("DELETE FROM roles WHERE id = ?", (role_id,))

    async def grant_cells(self, role_id: str, feature_ids: Sequence[str]) -> None:
        """Write granted cells without a revision bump (catalog seeding only)."""
        async with self._transaction() as db:
            await db.executemany(
                "INSERT OR REPLACE INTO access_cells (role_id, feature_id, granted) VALUES (?, ?, 1)",
                [(role_id, fid) for fid in feature_ids],
            )

    @staticmethod
    def _row_to_role(row: aiosqlite.Row) -> Role:
        return Role(
            id=row["id"],
            name=row["name"],
            display_name=row["display_name"],
            description=row["description"],
            permissions=json.loads(row["permissions"]),
            is_system_role=bool(row["is_system_role"]),
            is_admin=bool(row["is_admin"]),
            assigned_principal_count=row["assigned_principal_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
