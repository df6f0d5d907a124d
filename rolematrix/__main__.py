"""rolematrix command line: python3 -m rolematrix {check,preview,seed} ..."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from rolematrix.config import settings
from rolematrix.core.catalog import load_catalog_file, seed_persistence
from rolematrix.core.service import AccessControlService
from rolematrix.exceptions import CatalogError, RoleMatrixError
from rolematrix.logging_config import log_startup_info, setup_logging
from rolematrix.storage.base import create_persistence
from rolematrix.storage.memory import InMemoryPersistence

logger = logging.getLogger("rolematrix.cli")


def _catalog_path(path: str | None) -> str:
    path = path or settings.catalog_path
    if not path:
        raise CatalogError("No catalog file given and RM_CATALOG_PATH is not set")
    return path


async def _load(catalog_path: str | None) -> AccessControlService:
    persistence = InMemoryPersistence()
    await seed_persistence(persistence, load_catalog_file(_catalog_path(catalog_path)))
    service = AccessControlService(persistence)
    await service.initialize()
    return service


async def _check(args: argparse.Namespace) -> int:
    service = await _load(args.catalog)
    violations = service.invariant_violations()
    for issue in violations:
        print(f"{issue.role_id}: {issue.message}")
    print(
        f"{len(service.list_features())} features, {len(service.list_roles())} roles, "
        f"{len(violations)} invariant violations"
    )
    return 1 if violations else 0


async def _preview(args: argparse.Namespace) -> int:
    service = await _load(args.catalog)
    overlay = {fid: True for fid in args.grant} | {fid: False for fid in args.revoke}
    preview = service.preview_role(args.role, overlay or None)
    print(json.dumps(preview.model_dump(mode="json"), indent=2))
    return 0


async def _seed(args: argparse.Namespace) -> int:
    persistence = create_persistence("sqlite", db_path=args.db)
    await persistence.connect()
    try:
        await seed_persistence(persistence, load_catalog_file(_catalog_path(args.catalog)))
        service = AccessControlService(persistence)
        await service.initialize()
        log_startup_info(len(service.list_features()), len(service.list_roles()), storage_backend="sqlite")
    finally:
        await persistence.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="rolematrix", description="Feature access control engine")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Validate a catalog file and its initial grants")
    check.add_argument("catalog", nargs="?", help="Path to a JSON catalog file (default: RM_CATALOG_PATH)")
    check.set_defaults(handler=_check)

    preview = sub.add_parser("preview", help="Show what a role would see")
    preview.add_argument("catalog", help="Path to a JSON catalog file")
    preview.add_argument("role", help="Role id")
    preview.add_argument("--grant", action="append", default=[], help="Hypothetically grant a feature")
    preview.add_argument("--revoke", action="append", default=[], help="Hypothetically revoke a feature")
    preview.set_defaults(handler=_preview)

    seed = sub.add_parser("seed", help="Write a catalog file into a SQLite database")
    seed.add_argument("catalog", nargs="?", help="Path to a JSON catalog file (default: RM_CATALOG_PATH)")
    seed.add_argument("--db", default=None, help="SQLite path (default: RM_DB_PATH)")
    seed.set_defaults(handler=_seed)

    args = parser.parse_args(argv)
    setup_logging()
    try:
        return asyncio.run(args.handler(args))
    except RoleMatrixError as exc:
        logger.error("%s: %s", exc.error_type, exc.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
