"""Shared fixtures: a seeded directory, fake collaborators and a fake clock."""

from datetime import datetime, timedelta, timezone

import pytest

from hireflow.config import QueueSettings
from hireflow.contracts import (
    ActionKind,
    Stage,
    StageAction,
    StageRequirement,
    StageType,
    WorkflowDefinition,
)
from hireflow.directory import Candidate, Company, Employee, InMemoryDirectory, JobPosting, SalaryRange
from hireflow.dispatch import ActionQueueDispatcher
from hireflow.events import EventBus, EventKind
from hireflow.manager import WorkflowInstanceManager
from hireflow.persistence import InMemoryInstanceRepository
from hireflow.queues import InMemoryJobStore
from hireflow.requirements import InMemoryRequirementReader, RequirementEvaluator
from hireflow.services import ConflictReport, InMemoryInterviewStore, Services


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeEmailService:
    def __init__(self) -> None:
        self.sent = []
        self.refuse = False

    async def send_personalized_email(self, template_name, recipient_email, recipient_name, variables, **options):
        if self.refuse:
            return False
        self.sent.append(
            {
                "template_name": template_name,
                "recipient_email": recipient_email,
                "recipient_name": recipient_name,
                "variables": variables,
                **options,
            }
        )
        return True


class FakeCalendarService:
    def __init__(self) -> None:
        self.events = []
        self.fail = False

    async def create_event(self, event):
        if self.fail:
            raise RuntimeError("calendar unavailable")
        self.events.append(event)
        return f"evt-{len(self.events)}"

    async def update_event(self, event_id, patch):
        return True

    async def delete_event(self, event_id):
        return True

    async def check_conflicts(self, start, end, attendees):
        return ConflictReport()


class EventRecorder:
    """Subscribes to every event kind and keeps what it saw."""

    def __init__(self, bus: EventBus) -> None:
        self.events = []
        for kind in EventKind:
            bus.subscribe(kind, self._record)

    async def _record(self, event) -> None:
        self.events.append(event)

    @property
    def kinds(self):
        return [e.kind for e in self.events]


def two_stage_definition(**overrides) -> WorkflowDefinition:
    data = dict(
        workflow_id="W1",
        company_id="CO1",
        name="Engineering hiring",
        stages=[
            Stage(stage_id="screening", name="Screening", type=StageType.SCREENING, order=1),
            Stage(stage_id="interview", name="Interview", type=StageType.INTERVIEW, order=2),
        ],
    )
    data.update(overrides)
    return WorkflowDefinition(**data)


def seeded_directory() -> InMemoryDirectory:
    directory = InMemoryDirectory()
    directory.add(two_stage_definition())
    directory.add(
        WorkflowDefinition(
            workflow_id="W-auto",
            company_id="CO1",
            name="Approval gated",
            stages=[
                Stage(stage_id="screening", name="Screening", type=StageType.SCREENING, order=1),
                Stage(
                    stage_id="review",
                    name="Review",
                    type=StageType.REVIEW,
                    order=2,
                    auto_advance=True,
                    requirements=[StageRequirement(type="manual_approval")],
                ),
                Stage(
                    stage_id="offer",
                    name="Offer",
                    type=StageType.OFFER,
                    order=3,
                    actions=[StageAction(type=ActionKind.GENERATE_OFFER_LETTER)],
                ),
            ],
        )
    )
    directory.add(
        Candidate(
            candidate_id="C1",
            first_name="Ada",
            last_name="Lovelace",
            email="ada@example.com",
            experience="5 years",
            profile={"skills": ["python"]},
        )
    )
    directory.add(
        JobPosting(
            job_id="J1",
            company_id="CO1",
            title="Backend Engineer",
            department="Engineering",
            hiring_manager_id="E1",
            salary=SalaryRange(currency="USD", min=100000, max=130000),
            skills_required=["python", "asyncio"],
        )
    )
    directory.add(Company(company_id="CO1", name="Analytical Engines"))
    directory.add(
        Employee(employee_id="E1", first_name="Grace", last_name="Hopper", email="grace@example.com")
    )
    directory.add(
        Employee(employee_id="E2", first_name="Alan", last_name="Turing", email="alan@example.com")
    )
    return directory


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    return seeded_directory()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def reader():
    return InMemoryRequirementReader()


@pytest.fixture
def repository():
    return InMemoryInstanceRepository()


@pytest.fixture
def manager(repository, directory, bus, reader, clock):
    return WorkflowInstanceManager(
        repository, directory, bus, RequirementEvaluator(reader), clock=clock
    )


@pytest.fixture
def dispatcher(clock):
    return ActionQueueDispatcher(InMemoryJobStore(), QueueSettings(), clock=clock)


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def calendar_service():
    return FakeCalendarService()


@pytest.fixture
def services(directory, email_service, calendar_service):
    return Services(
        directory=directory,
        email=email_service,
        calendar=calendar_service,
        interviews=InMemoryInterviewStore(),
    )
