"""Shared fixtures for rolematrix tests."""

from __future__ import annotations

import pytest_asyncio

from rolematrix.core.catalog import CatalogFile, seed_persistence
from rolematrix.core.models import (
    CatalogSnapshot,
    Feature,
    FeatureCategory,
    Permission,
    Role,
)
from rolematrix.core.service import AccessControlService
from rolematrix.storage.database import Database
from rolematrix.storage.memory import InMemoryPersistence


def build_catalog() -> CatalogSnapshot:
    """A small expense/settings catalog with a three-level dependency chain.

    expense_read <- expense_write <- analytics
    expense_read <- charts
    settings <- user_management (admin only)
    navigation is core.
    """
    return CatalogSnapshot(
        categories=[
            FeatureCategory(id="core-apps", name="Core Applications"),
            FeatureCategory(id="dashboard", name="Dashboard Components"),
            FeatureCategory(id="ui", name="User Interface"),
            FeatureCategory(id="admin", name="Administrative"),
        ],
        features=[
            Feature(id="navigation", name="Navigation Menu", application_id="shell", category="ui", is_core=True),
            Feature(id="themes", name="Theme System", application_id="shell", category="ui"),
            Feature(id="expense_read", name="Expense Read", application_id="expenses", category="core-apps"),
            Feature(
                id="expense_write",
                name="Expense Write",
                application_id="expenses",
                category="core-apps",
                dependencies=["expense_read"],
            ),
            Feature(
                id="analytics",
                name="Analytics Dashboard",
                application_id="expenses",
                category="dashboard",
                dependencies=["expense_write"],
            ),
            Feature(
                id="charts",
                name="Charts & Graphs",
                application_id="expenses",
                category="dashboard",
                dependencies=["expense_read"],
            ),
            Feature(id="settings", name="Settings", application_id="settings", category="admin"),
            Feature(
                id="user_management",
                name="User Management",
                application_id="settings",
                category="admin",
                dependencies=["settings"],
                admin_only=True,
            ),
        ],
        permissions=[
            Permission(id="expense_read", name="Expense Read", category="expense"),
            Permission(id="expense_write", name="Expense Write", category="expense"),
            Permission(id="user_management", name="User Management", category="admin"),
            Permission(id="report_access", name="Report Access", category="reporting"),
        ],
        roles=[
            Role(
                id="admin",
                name="Administrator",
                description="Full system access",
                permissions=["expense_read", "expense_write", "user_management"],
                is_system_role=True,
                is_admin=True,
                assigned_principal_count=1,
            ),
            Role(
                id="officer",
                name="Account Officer",
                description="Expense management only",
                permissions=["expense_read", "expense_write"],
                assigned_principal_count=3,
            ),
            Role(
                id="temp",
                name="Temp Role",
                description="Short-lived role",
                permissions=["expense_read"],
            ),
        ],
    )


DEFAULT_GRANTS = {
    "admin": ["navigation", "expense_read", "expense_write", "settings", "user_management"],
    "officer": ["navigation", "expense_read", "expense_write"],
}


def build_catalog_file(grants: dict[str, list[str]] | None = None) -> CatalogFile:
    data = build_catalog().model_dump()
    data["grants"] = DEFAULT_GRANTS if grants is None else grants
    return CatalogFile.model_validate(data)


async def make_service(
    grants: dict[str, list[str]] | None = None,
) -> tuple[AccessControlService, InMemoryPersistence]:
    persistence = InMemoryPersistence()
    await seed_persistence(persistence, build_catalog_file(grants))
    svc = AccessControlService(persistence)
    await svc.initialize()
    return svc, persistence


@pytest_asyncio.fixture
async def memory_store():
    """Seeded in-memory persistence."""
    persistence = InMemoryPersistence()
    await seed_persistence(persistence, build_catalog_file())
    return persistence


@pytest_asyncio.fixture
async def service(memory_store):
    """Initialized service over the seeded in-memory store."""
    svc = AccessControlService(memory_store)
    await svc.initialize()
    return svc


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh seeded SQLite database for each test."""
    database = Database(tmp_path / "rolematrix_test.db")
    await database.connect()
    await seed_persistence(database, build_catalog_file())
    yield database
    await database.close()


@pytest_asyncio.fixture
async def sqlite_service(db):
    svc = AccessControlService(db)
    await svc.initialize()
    return svc
