"""Hireflow: hiring-pipeline workflow state machine and action dispatch."""

from .contracts import (
    ActionKind,
    ActionTrigger,
    InstanceStatus,
    RequirementKind,
    Stage,
    StageAction,
    StageRequirement,
    WorkflowDefinition,
    WorkflowInstance,
)
from .dispatch import ActionQueueDispatcher
from .events import EventBus, EventKind
from .handlers import register_workflow_handlers
from .manager import AdvanceOptions, WorkflowAnalytics, WorkflowInstanceManager
from .persistence import get_repository
from .processors import build_processors
from .queues import get_job_store
from .requirements import InMemoryRequirementReader, RequirementEvaluator

__version__ = "0.1.0"
__all__ = [
    "ActionKind",
    "ActionQueueDispatcher",
    "ActionTrigger",
    "AdvanceOptions",
    "EventBus",
    "EventKind",
    "InMemoryRequirementReader",
    "InstanceStatus",
    "RequirementEvaluator",
    "RequirementKind",
    "Stage",
    "StageAction",
    "StageRequirement",
    "WorkflowAnalytics",
    "WorkflowDefinition",
    "WorkflowInstance",
    "WorkflowInstanceManager",
    "build_processors",
    "get_job_store",
    "get_repository",
    "register_workflow_handlers",
]
