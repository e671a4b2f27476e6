"""Typed workflow lifecycle events and the in-process event bus."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .contracts import ActionKind, ActionTrigger, Stage, StageOutcome, utcnow

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    STAGE_ENTERED = "stage_entered"
    STAGE_EXITED = "stage_exited"
    CANDIDATE_ADVANCED = "candidate_advanced"
    CANDIDATE_REJECTED = "candidate_rejected"
    WORKFLOW_COMPLETED = "workflow_completed"
    ACTION_TRIGGERED = "action_triggered"


class WorkflowEvent(BaseModel):
    """Fields shared by every lifecycle event."""

    kind: EventKind
    candidate_id: str
    job_id: str
    company_id: str
    workflow_id: str
    stage_id: Optional[str] = None
    triggered_by: str
    timestamp: datetime = Field(default_factory=utcnow)
    payload: Dict[str, Any] = Field(default_factory=dict)


class StageChangeEvent(WorkflowEvent):
    """``stage_entered`` / ``stage_exited``, carrying the full stage."""

    stage: Stage
    previous_stage_id: Optional[str] = None
    outcome: Optional[StageOutcome] = None
    feedback: Optional[str] = None
    score: Optional[float] = None
    reason: Optional[str] = None


class CandidateStatusEvent(WorkflowEvent):
    """``candidate_advanced`` / ``candidate_rejected``."""

    reason: Optional[str] = None
    feedback: Optional[str] = None
    score: Optional[float] = None


class WorkflowCompletedEvent(WorkflowEvent):
    kind: EventKind = EventKind.WORKFLOW_COMPLETED


class ActionTriggeredEvent(WorkflowEvent):
    kind: EventKind = EventKind.ACTION_TRIGGERED
    action_type: ActionKind
    action_config: Dict[str, Any] = Field(default_factory=dict)
    trigger: ActionTrigger = ActionTrigger.MANUAL


EventHandler = Callable[[Any], Awaitable[None]]


class EventBus:
    """Dispatches events to handlers in registration order.

    Handlers run sequentially on the emitter's task, so a single emitter
    observes its events delivered in emission order. A failing handler is
    logged and does not prevent the remaining handlers from running.
    """

    def __init__(self) -> None:
        self._handlers: Dict[EventKind, List[EventHandler]] = defaultdict(list)

    def subscribe(self, kind: EventKind, handler: EventHandler) -> None:
        self._handlers[EventKind(kind)].append(handler)

    def unsubscribe(self, kind: EventKind, handler: EventHandler) -> None:
        handlers = self._handlers.get(EventKind(kind), [])
        if handler in handlers:
            handlers.remove(handler)

    def on(self, kind: EventKind) -> Callable[[EventHandler], EventHandler]:
        """Decorator form of :meth:`subscribe`."""

        def decorator(handler: EventHandler) -> EventHandler:
            self.subscribe(kind, handler)
            return handler

        return decorator

    def handler_count(self, kind: EventKind) -> int:
        return len(self._handlers.get(EventKind(kind), []))

    async def emit(self, event: WorkflowEvent) -> None:
        logger.info(
            f"Emitting {event.kind.value} for candidate={event.candidate_id} "
            f"job={event.job_id} stage={event.stage_id}"
        )
        for handler in list(self._handlers.get(event.kind, [])):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    f"Handler {getattr(handler, '__name__', handler)!r} failed for "
                    f"{event.kind.value} candidate={event.candidate_id} job={event.job_id}"
                )
