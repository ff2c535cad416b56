"""Read-only access to the platform's resource directory."""
from __future__ import annotations

from typing import List

from asyncpg import Pool  # type: ignore[import-untyped]

from webhook_service.domain.webhooks import Resource, ResourceType
from webhook_service.repositories.base import BaseRepository


class ResourceRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    async def get(self, resource_id: int) -> Resource | None:
        record = await self._fetchrow(
            """
            SELECT id, name, status, type_id, parent_id, site_id
            FROM resources
            WHERE id = $1
            """,
            resource_id,
        )
        return Resource.model_validate(dict(record)) if record is not None else None

    async def get_type(self, resource_type_id: int) -> ResourceType | None:
        record = await self._fetchrow(
            "SELECT id, name, site_id FROM resource_types WHERE id = $1",
            resource_type_id,
        )
        return ResourceType.model_validate(dict(record)) if record is not None else None

    async def list_ancestor_ids(self, resource_id: int) -> List[int]:
        """Parent chain of a resource, nearest first. Stops on cycles."""
        records = await self._fetch(
            """
            WITH RECURSIVE chain(id, parent_id, path) AS (
                SELECT id, parent_id, ARRAY[id]
                FROM resources
                WHERE id = $1
                UNION ALL
                SELECT r.id, r.parent_id, c.path || r.id
                FROM resources r
                JOIN chain c ON r.id = c.parent_id
                WHERE NOT r.id = ANY(c.path)
            )
            SELECT id
            FROM chain
            WHERE id <> $1
            ORDER BY cardinality(path) ASC
            """,
            resource_id,
        )
        return [int(r["id"]) for r in records]
