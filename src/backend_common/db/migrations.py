"""Plain-SQL migration runner applied on service startup."""
from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Protocol

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

CONNECT_ATTEMPTS = 5
CONNECT_RETRY_DELAY_SECONDS = 2.0


class SettingsProtocol(Protocol):
    database_url: Any


def _find_migrations_dir(candidates: list[Path]) -> Path | None:
    for path in candidates:
        if path.exists():
            return path
    return None


def load_migrations(migrations_dir: Path) -> dict[str, Path]:
    """Map ``<version>`` (file stem) to path, sorted by file name."""
    migrations: dict[str, Path] = {}
    for path in sorted(migrations_dir.glob("*.sql")):
        if path.stem in migrations:
            raise ValueError(f"Duplicate migration version detected: {path.stem}")
        migrations[path.stem] = path
    return migrations


async def _connect(dsn: str) -> asyncpg.Connection | None:
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        try:
            return await asyncpg.connect(dsn)
        except (OSError, asyncpg.PostgresError) as exc:
            logger.warning(
                "migrations: database connection failed",
                attempt=attempt,
                max_attempts=CONNECT_ATTEMPTS,
                error=str(exc),
            )
            if attempt < CONNECT_ATTEMPTS:
                await asyncio.sleep(CONNECT_RETRY_DELAY_SECONDS)
    return None


async def apply_migrations(conn: asyncpg.Connection, migrations: dict[str, Path]) -> list[str]:
    """Apply pending migrations, each in its own transaction. Returns applied versions."""
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    applied = {row["version"]: row["checksum"] for row in rows}

    done: list[str] = []
    for version, path in migrations.items():
        sql = path.read_text(encoding="utf-8")
        checksum = hashlib.sha256(sql.encode("utf-8")).hexdigest()
        if version in applied:
            if applied[version] != checksum:
                raise RuntimeError(
                    f"Checksum mismatch for {version}: {applied[version]} (db) != {checksum} (file)"
                )
            continue
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                version,
                checksum,
            )
        logger.info("migrations: applied", version=version, file=path.name)
        done.append(version)
    return done


def create_migration_runner(
    settings: SettingsProtocol,
    possible_paths: Iterable[Path],
) -> Callable[[web.Application], Awaitable[None]]:
    """Build an ``on_startup`` hook applying migrations from the first existing path."""
    candidates = list(possible_paths)

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        migrations_dir = _find_migrations_dir(candidates)
        if migrations_dir is None:
            logger.warning("migrations: directory not found, skipping", tried=[str(p) for p in candidates])
            return
        migrations = load_migrations(migrations_dir)
        if not migrations:
            logger.warning("migrations: none found, skipping", directory=str(migrations_dir))
            return

        conn = await _connect(str(settings.database_url))
        if conn is None:
            logger.error("migrations: could not connect to database, skipping")
            return
        try:
            applied = await apply_migrations(conn, migrations)
        finally:
            await conn.close()
        logger.info("migrations: up to date", applied=len(applied), known=len(migrations))

    return apply_migrations_on_startup
