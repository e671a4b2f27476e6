"""Default event handlers: translate lifecycle events into queued jobs.

Handlers never call external services themselves; they only enqueue
workflow-action and notification jobs and return.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from .contracts import ActionKind, ActionTrigger, StageAction
from .dispatch import ActionQueueDispatcher
from .events import (
    ActionTriggeredEvent,
    CandidateStatusEvent,
    EventBus,
    EventKind,
    StageChangeEvent,
    WorkflowEvent,
)
from .jobs import NotificationPayload, WorkflowActionPayload

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class WorkflowEventHandlers:
    """Handler catalog for the workflow lifecycle events."""

    def __init__(self, dispatcher: ActionQueueDispatcher) -> None:
        self._dispatcher = dispatcher

    def register(self, bus: EventBus) -> None:
        bus.subscribe(EventKind.STAGE_ENTERED, self.on_stage_entered)
        bus.subscribe(EventKind.STAGE_EXITED, self.on_stage_exited)
        bus.subscribe(EventKind.WORKFLOW_COMPLETED, self.on_workflow_completed)
        bus.subscribe(EventKind.CANDIDATE_ADVANCED, self.on_candidate_advanced)
        bus.subscribe(EventKind.CANDIDATE_REJECTED, self.on_candidate_rejected)
        bus.subscribe(EventKind.ACTION_TRIGGERED, self.on_action_triggered)

    async def _enqueue_actions(self, event: WorkflowEvent, actions: List[StageAction]) -> None:
        for action in actions:
            await self._enqueue_action(event, action.type, action.config, action.trigger)

    async def _enqueue_action(
        self,
        event: WorkflowEvent,
        action_type: ActionKind,
        config: Dict[str, Any],
        trigger: ActionTrigger,
    ) -> str:
        job_id = await self._dispatcher.add_workflow_action_job(
            WorkflowActionPayload(
                action_type=action_type,
                candidate_id=event.candidate_id,
                job_id=event.job_id,
                company_id=event.company_id,
                workflow_id=event.workflow_id,
                stage_id=event.stage_id or "",
                action_config=config,
                triggered_by=event.triggered_by,
                trigger=trigger,
                metadata=event.payload,
            )
        )
        logger.info(
            f"Queued {action_type.value} ({trigger.value}) action {job_id} for "
            f"candidate={event.candidate_id} job={event.job_id}"
        )
        return job_id

    async def _notify(
        self, recipient_id: str, recipient_type: str, data: Dict[str, Any]
    ) -> str:
        return await self._dispatcher.add_notification_job(
            NotificationPayload(
                type="candidate_stage_change",
                recipient_id=recipient_id,
                recipient_type=recipient_type,
                data=data,
                channels=["email"],
            )
        )

    async def on_stage_entered(self, event: StageChangeEvent) -> None:
        await self._enqueue_actions(event, event.stage.actions_for(ActionTrigger.ON_ENTER))

        payload = event.payload
        data = {
            "candidate_id": event.candidate_id,
            "job_id": event.job_id,
            "stage_id": event.stage_id,
            "stage_type": event.stage.type.value,
            "old_stage": payload.get("previous_stage_name"),
            "new_stage": event.stage.name,
            "company_name": payload.get("company_name"),
            "job_title": payload.get("job_title"),
        }
        await self._notify(event.candidate_id, "candidate", data)
        hiring_manager_id = payload.get("hiring_manager_id")
        if hiring_manager_id:
            await self._notify(
                hiring_manager_id,
                "hiring_manager",
                {
                    **data,
                    "candidate_name": payload.get("candidate_name"),
                    "previous_stage_id": event.previous_stage_id,
                },
            )

    async def on_stage_exited(self, event: StageChangeEvent) -> None:
        await self._enqueue_actions(event, event.stage.actions_for(ActionTrigger.ON_EXIT))

    async def on_workflow_completed(self, event: WorkflowEvent) -> None:
        data = {
            "candidate_id": event.candidate_id,
            "job_id": event.job_id,
            "workflow_id": event.workflow_id,
            "company_name": event.payload.get("company_name"),
            "candidate_name": event.payload.get("candidate_name"),
            "status": "completed",
            "new_stage": "Completed",
        }
        await self._notify(
            event.candidate_id,
            "candidate",
            {**data, "message": "Congratulations! You have completed the hiring process."},
        )
        if event.triggered_by != SYSTEM_ACTOR:
            await self._notify(
                event.triggered_by,
                "recruiter",
                {**data, "message": "Candidate has completed the hiring workflow."},
            )

    async def on_candidate_advanced(self, event: CandidateStatusEvent) -> None:
        await self._notify(
            event.candidate_id,
            "candidate",
            {
                "candidate_id": event.candidate_id,
                "job_id": event.job_id,
                "old_stage": event.payload.get("previous_stage_name"),
                "new_stage": event.payload.get("current_stage_name"),
                "company_name": event.payload.get("company_name"),
                "reason": event.reason,
                "feedback": event.feedback,
            },
        )

    async def on_candidate_rejected(self, event: CandidateStatusEvent) -> None:
        await self._enqueue_action(
            event,
            ActionKind.SEND_EMAIL,
            {
                "template_name": "rejection",
                "custom_variables": {
                    "reason": event.reason,
                    "feedback": event.feedback,
                },
            },
            ActionTrigger.MANUAL,
        )

    async def on_action_triggered(self, event: ActionTriggeredEvent) -> None:
        await self._enqueue_action(event, event.action_type, event.action_config, event.trigger)


def register_workflow_handlers(
    bus: EventBus, dispatcher: ActionQueueDispatcher
) -> WorkflowEventHandlers:
    """Install the default handler catalog on ``bus``."""
    handlers = WorkflowEventHandlers(dispatcher)
    handlers.register(bus)
    return handlers
