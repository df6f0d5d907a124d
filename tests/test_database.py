"""Tests for the SQLite persistence backend and the backend factory."""

from __future__ import annotations

import pytest
import pytest_asyncio

from rolematrix.core.models import AccessCell, Role
from rolematrix.core.service import AccessControlService
from rolematrix.exceptions import ConcurrentModificationError, RoleNotFoundError, StorageError
from rolematrix.storage.base import Persistence, create_persistence
from rolematrix.storage.database import Database
from rolematrix.storage.memory import InMemoryPersistence


@pytest_asyncio.fixture
async def second_service(db):
    """Another engine instance over the same SQLite file."""
    other = Database(db.db_path)
    await other.connect()
    svc = AccessControlService(other)
    await svc.initialize()
    yield svc
    await other.close()


class TestSchema:
    @pytest.mark.asyncio
    async def test_catalog_round_trip(self, db):
        snapshot = await db.load_catalog()
        assert {r.id for r in snapshot.roles} == {"admin", "officer", "temp"}
        assert len(snapshot.features) == 8
        assert len(snapshot.categories) == 4
        analytics = next(f for f in snapshot.features if f.id == "analytics")
        assert analytics.dependencies == ["expense_write"]
        admin = next(r for r in snapshot.roles if r.id == "admin")
        assert admin.is_system_role and admin.is_admin
        assert admin.assigned_principal_count == 1

    @pytest.mark.asyncio
    async def test_every_role_has_a_full_row(self, db):
        cells = await db.load_matrix()
        assert len(cells) == 3 * 8
        granted = {(c.role_id, c.feature_id) for c in cells if c.granted}
        assert ("officer", "expense_write") in granted
        assert not any(rid == "temp" for rid, _ in granted)

    @pytest.mark.asyncio
    async def test_revisions_start_at_zero(self, db):
        assert await db.load_revisions() == {"admin": 0, "officer": 0, "temp": 0}

    def test_implements_protocol(self, tmp_path):
        assert isinstance(Database(tmp_path / "x.db"), Persistence)
        assert isinstance(InMemoryPersistence(), Persistence)


class TestCommit:
    @pytest.mark.asyncio
    async def test_delta_bumps_revision(self, db):
        outcome = await db.commit_matrix_delta(
            [AccessCell(role_id="temp", feature_id="themes", granted=True)], {"temp": 0}
        )
        assert outcome.success
        assert outcome.new_revisions == {"temp": 1}
        assert (await db.load_revisions())["temp"] == 1

    @pytest.mark.asyncio
    async def test_stale_revision_writes_nothing(self, db):
        before = await db.load_matrix()
        with pytest.raises(ConcurrentModificationError):
            await db.commit_matrix_delta(
                [
                    AccessCell(role_id="temp", feature_id="themes", granted=True),
                    AccessCell(role_id="officer", feature_id="themes", granted=True),
                ],
                {"temp": 0, "officer": 5},
            )
        assert await db.load_matrix() == before
        assert (await db.load_revisions())["temp"] == 0

    @pytest.mark.asyncio
    async def test_unknown_role(self, db):
        with pytest.raises(RoleNotFoundError):
            await db.commit_matrix_delta([], {"ghost": 0})

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected_by_storage(self, db):
        with pytest.raises(StorageError):
            await db.persist_role(Role(name="account officer", description="clash"))


class TestServiceOverSqlite:
    @pytest.mark.asyncio
    async def test_commit_survives_reload(self, sqlite_service, db):
        result = await sqlite_service.toggle_feature("officer", "analytics", True)
        assert result.ok

        fresh = AccessControlService(db)
        await fresh.initialize()
        assert fresh.has_access("officer", "analytics")
        assert fresh.engine.revision("officer") == 1

    @pytest.mark.asyncio
    async def test_rejected_change_not_persisted(self, sqlite_service, db):
        before = await db.load_matrix()
        result = await sqlite_service.bulk_update([])
        assert result.ok
        result = await sqlite_service.toggle_feature("temp", "charts", True)
        assert not result.ok
        assert await db.load_matrix() == before

    @pytest.mark.asyncio
    async def test_two_engines_conflict(self, sqlite_service, second_service):
        await sqlite_service.toggle_feature("temp", "themes", True)
        with pytest.raises(ConcurrentModificationError):
            await second_service.toggle_feature("temp", "expense_read", True)
        assert not second_service.has_access("temp", "expense_read")

        await second_service.refresh()
        assert second_service.has_access("temp", "themes")
        result = await second_service.toggle_feature("temp", "expense_read", True)
        assert result.revisions["temp"] == 2

    @pytest.mark.asyncio
    async def test_other_roles_do_not_conflict(self, sqlite_service, second_service):
        await sqlite_service.toggle_feature("temp", "themes", True)
        result = await second_service.toggle_feature("officer", "themes", True)
        assert result.ok

    @pytest.mark.asyncio
    async def test_role_lifecycle_persisted(self, sqlite_service, db):
        role = await sqlite_service.create_role("Auditor", "Reads reports", ["report_access"])
        cells = [c for c in await db.load_matrix() if c.role_id == role.id]
        assert len(cells) == 8
        assert not any(c.granted for c in cells)

        await sqlite_service.delete_role(role.id)
        assert not [c for c in await db.load_matrix() if c.role_id == role.id]
        assert role.id not in await db.load_revisions()
        assert role.id not in {r.id for r in (await db.load_catalog()).roles}


class TestFactory:
    def test_memory_backend(self):
        assert isinstance(create_persistence("memory"), InMemoryPersistence)

    def test_sqlite_backend(self, tmp_path):
        backend = create_persistence("sqlite", db_path=str(tmp_path / "f.db"))
        assert isinstance(backend, Database)
        assert backend.db_path == tmp_path / "f.db"

    def test_env_selects_backend(self, monkeypatch, tmp_path):
        monkeypatch.setenv("RM_STORAGE", "sqlite")
        monkeypatch.setenv("RM_DB_PATH", str(tmp_path / "env.db"))
        backend = create_persistence()
        assert isinstance(backend, Database)
        assert backend.db_path == tmp_path / "env.db"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_persistence("postgres")
