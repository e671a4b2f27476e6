"""Repository abstraction for workflow instance persistence."""

from __future__ import annotations

from typing import Protocol

from ..contracts import InstanceStatus, WorkflowInstance


class InstanceRepository(Protocol):
    """Protocol for workflow instance persistence backends.

    Instances live in their own collection keyed by ``instance_id`` and are
    looked up by ``(candidate_id, job_id)``; the most recently started
    instance of a pair wins. Records are never deleted.
    """

    async def find_instance(
        self, candidate_id: str, job_id: str
    ) -> WorkflowInstance | None:
        """Return the newest instance for the candidate/job pair."""

    async def save_instance(self, instance: WorkflowInstance) -> None:
        """Insert a new instance."""

    async def update_instance(self, instance: WorkflowInstance) -> None:
        """Persist ``instance`` if its ``version`` matches the stored one.

        On success ``instance.version`` is incremented; otherwise
        :class:`~hireflow.errors.ConcurrentModificationError` is raised.
        """

    async def list_instances(
        self, status: InstanceStatus | None = None
    ) -> list[WorkflowInstance]:
        """Return all persisted instances, optionally filtered by status."""
