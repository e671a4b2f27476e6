"""SQLite implementation of the instance repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

from ..contracts import InstanceStatus, WorkflowInstance
from ..errors import ConcurrentModificationError
from .repository import InstanceRepository


class SQLiteInstanceRepository(InstanceRepository):
    """Persist workflow instances using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                instance_id TEXT NOT NULL UNIQUE,
                candidate_id TEXT NOT NULL,
                job_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                document TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_workflow_instances_pair
            ON workflow_instances (candidate_id, job_id)
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    # ------------------------------------------------------------------
    # Repository API
    async def find_instance(
        self, candidate_id: str, job_id: str
    ) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM workflow_instances WHERE candidate_id = ? AND job_id = ? "
            "ORDER BY seq DESC LIMIT 1",
            candidate_id,
            job_id,
        )
        if not row:
            return None
        return WorkflowInstance.from_json(row["document"])

    async def save_instance(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO workflow_instances (instance_id, candidate_id, job_id, status, version, document) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            instance.instance_id,
            instance.candidate_id,
            instance.job_id,
            instance.status.value,
            instance.version,
            instance.to_json(),
        )

    async def update_instance(self, instance: WorkflowInstance) -> None:
        expected = instance.version
        instance.version = expected + 1
        updated = await asyncio.to_thread(
            self._execute,
            "UPDATE workflow_instances SET status = ?, version = ?, document = ? "
            "WHERE instance_id = ? AND version = ?",
            instance.status.value,
            instance.version,
            instance.to_json(),
            instance.instance_id,
            expected,
        )
        if updated != 1:
            instance.version = expected
            raise ConcurrentModificationError(
                f"Instance {instance.instance_id} changed since it was read"
            )

    async def list_instances(
        self, status: InstanceStatus | None = None
    ) -> list[WorkflowInstance]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT document FROM workflow_instances ORDER BY seq",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT document FROM workflow_instances WHERE status = ? ORDER BY seq",
                InstanceStatus(status).value,
            )
        return [WorkflowInstance.from_json(row["document"]) for row in rows]
