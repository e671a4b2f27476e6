"""Action processors and their registration on the dispatcher."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..dispatch import (
    EMAIL_LANES,
    EMAIL_QUEUE,
    NOTIFICATION_LANE,
    NOTIFICATION_QUEUE,
    SCHEDULE_LANE,
    SCHEDULE_QUEUE,
    WORKFLOW_LANE,
    WORKFLOW_QUEUE,
    ActionQueueDispatcher,
)
from ..errors import ConfigurationError
from ..services import Services
from .email import EmailProcessor
from .notification import NotificationProcessor
from .schedule import ScheduleProcessor
from .workflow_action import VerificationResult, WorkflowActionProcessor

logger = logging.getLogger(__name__)


@dataclass
class Processors:
    workflow: WorkflowActionProcessor
    email: EmailProcessor
    schedule: ScheduleProcessor
    notification: NotificationProcessor


def build_processors(
    dispatcher: ActionQueueDispatcher,
    services: Services,
    clock: Optional[Callable[[], datetime]] = None,
) -> Processors:
    """Create every processor and attach it to its queue lanes.

    Raises ``ConfigurationError`` if any configured lane is left without a
    processor.
    """
    processors = Processors(
        workflow=WorkflowActionProcessor(dispatcher, services, clock),
        email=EmailProcessor(dispatcher, services, clock),
        schedule=ScheduleProcessor(dispatcher, services, clock),
        notification=NotificationProcessor(dispatcher, services, clock),
    )
    dispatcher.register_processor(WORKFLOW_QUEUE, WORKFLOW_LANE, processors.workflow.process)
    for lane in EMAIL_LANES.values():
        dispatcher.register_processor(EMAIL_QUEUE, lane, processors.email.send)
    dispatcher.register_processor(SCHEDULE_QUEUE, SCHEDULE_LANE, processors.schedule.process)
    dispatcher.register_processor(
        NOTIFICATION_QUEUE, NOTIFICATION_LANE, processors.notification.process
    )

    unhandled = [
        f"{queue}/{lane}"
        for queue, spec in dispatcher.settings.queues.items()
        for lane in spec.lanes
        if not dispatcher.has_processor(queue, lane)
    ]
    if unhandled:
        raise ConfigurationError(f"No processor for lanes: {', '.join(unhandled)}")
    logger.info("Registered action processors for all queues")
    return processors


__all__ = [
    "EmailProcessor",
    "NotificationProcessor",
    "Processors",
    "ScheduleProcessor",
    "VerificationResult",
    "WorkflowActionProcessor",
    "build_processors",
]
