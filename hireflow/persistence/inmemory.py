"""In-memory implementation of the instance repository."""

from __future__ import annotations

from typing import Dict

from ..contracts import InstanceStatus, WorkflowInstance
from ..errors import ConcurrentModificationError
from .repository import InstanceRepository


class InMemoryInstanceRepository(InstanceRepository):
    """Store workflow instances in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}

    # ------------------------------------------------------------------
    async def find_instance(
        self, candidate_id: str, job_id: str
    ) -> WorkflowInstance | None:
        matches = [
            i
            for i in self._instances.values()
            if i.candidate_id == candidate_id and i.job_id == job_id
        ]
        if not matches:
            return None
        # insertion order is start order
        return matches[-1].model_copy(deep=True)

    async def save_instance(self, instance: WorkflowInstance) -> None:
        if instance.instance_id in self._instances:
            raise ValueError(f"Instance {instance.instance_id} already exists")
        self._instances[instance.instance_id] = instance.model_copy(deep=True)

    async def update_instance(self, instance: WorkflowInstance) -> None:
        stored = self._instances.get(instance.instance_id)
        if stored is None or stored.version != instance.version:
            raise ConcurrentModificationError(
                f"Instance {instance.instance_id} changed since it was read"
            )
        instance.version += 1
        self._instances[instance.instance_id] = instance.model_copy(deep=True)

    async def list_instances(
        self, status: InstanceStatus | None = None
    ) -> list[WorkflowInstance]:
        return [
            i.model_copy(deep=True)
            for i in self._instances.values()
            if status is None or i.status == status
        ]
