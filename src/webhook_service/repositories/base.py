"""Shared asyncpg helpers for repositories."""
from __future__ import annotations

from typing import Any, Iterable, List

import asyncpg  # type: ignore[import-untyped]


class BaseRepository:
    """Thin wrapper over asyncpg pool operations."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args: Any) -> Iterable[asyncpg.Record]:
        async with self._pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def _fetch_in_transaction(self, query: str, *args: Any) -> List[asyncpg.Record]:
        """Run a locking statement (``FOR UPDATE``) inside its own transaction."""
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                return list(await conn.fetch(query, *args))

    @staticmethod
    def _split_total(records: Iterable[asyncpg.Record]) -> tuple[list[dict[str, Any]], int | None]:
        """Strip the ``COUNT(*) OVER()`` column from paginated rows."""
        rows: list[dict[str, Any]] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            rows.append(rec_dict)
        return rows, total
