"""PostgreSQL implementation of the instance repository."""

from __future__ import annotations

import asyncpg

from ..contracts import InstanceStatus, WorkflowInstance
from ..errors import ConcurrentModificationError
from .repository import InstanceRepository


class PostgresInstanceRepository(InstanceRepository):
    """Persist workflow instances using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                seq BIGSERIAL PRIMARY KEY,
                instance_id TEXT NOT NULL UNIQUE,
                candidate_id TEXT NOT NULL,
                job_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                document JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_workflow_instances_pair
            ON workflow_instances (candidate_id, job_id)
            """
        )

    # ------------------------------------------------------------------
    async def find_instance(
        self, candidate_id: str, job_id: str
    ) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT document::text AS document FROM workflow_instances "
                "WHERE candidate_id = $1 AND job_id = $2 ORDER BY seq DESC LIMIT 1",
                candidate_id,
                job_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowInstance.from_json(row["document"])

    async def save_instance(self, instance: WorkflowInstance) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO workflow_instances (instance_id, candidate_id, job_id, status, version, document) "
                "VALUES ($1, $2, $3, $4, $5, $6::jsonb)",
                instance.instance_id,
                instance.candidate_id,
                instance.job_id,
                instance.status.value,
                instance.version,
                instance.to_json(),
            )
        finally:
            await conn.close()

    async def update_instance(self, instance: WorkflowInstance) -> None:
        expected = instance.version
        instance.version = expected + 1
        conn = await self._connect()
        try:
            result = await conn.execute(
                "UPDATE workflow_instances SET status = $1, version = $2, document = $3::jsonb "
                "WHERE instance_id = $4 AND version = $5",
                instance.status.value,
                instance.version,
                instance.to_json(),
                instance.instance_id,
                expected,
            )
        finally:
            await conn.close()
        if result != "UPDATE 1":
            instance.version = expected
            raise ConcurrentModificationError(
                f"Instance {instance.instance_id} changed since it was read"
            )

    async def list_instances(
        self, status: InstanceStatus | None = None
    ) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            if status is None:
                rows = await conn.fetch(
                    "SELECT document::text AS document FROM workflow_instances ORDER BY seq"
                )
            else:
                rows = await conn.fetch(
                    "SELECT document::text AS document FROM workflow_instances "
                    "WHERE status = $1 ORDER BY seq",
                    InstanceStatus(status).value,
                )
        finally:
            await conn.close()
        return [WorkflowInstance.from_json(row["document"]) for row in rows]
