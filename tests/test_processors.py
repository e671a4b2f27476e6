"""Action processor tests: each queued job runs through the real processors."""

from datetime import datetime, timezone

import httpx
import pytest

from hireflow.config import QueueSettings, QueueSpec, ServiceEndpoint
from hireflow.dispatch import ActionQueueDispatcher
from hireflow.errors import ConfigurationError
from hireflow.jobs import ActionJob, JobStatus, WorkflowActionPayload
from hireflow.processors import build_processors
from hireflow.queues import InMemoryJobStore
from hireflow.services import HttpEmailDeliveryService, InMemoryInterviewStore, Services


@pytest.fixture
def processors(dispatcher, services, clock):
    return build_processors(dispatcher, services, clock)


def action(action_type, **config):
    return {
        "action_type": action_type,
        "candidate_id": "C1",
        "job_id": "J1",
        "company_id": "CO1",
        "workflow_id": "W1",
        "stage_id": "screening",
        "action_config": config,
        "triggered_by": "u1",
        "metadata": {"company_name": "Analytical Engines", "recruiter_name": "Grace Hopper"},
    }


@pytest.mark.asyncio
async def test_send_email_action_delivers_personalized_email(processors, dispatcher, email_service):
    await dispatcher.add_workflow_action_job(
        action("send_email", template_name="welcome", custom_variables={"team": "Platform"})
    )

    assert await dispatcher.drain() == 2

    [sent] = email_service.sent
    assert sent["template_name"] == "welcome"
    assert sent["recipient_email"] == "ada@example.com"
    assert sent["variables"] == {
        "candidate_name": "Ada Lovelace",
        "job_title": "Backend Engineer",
        "company_name": "Analytical Engines",
        "recruiter_name": "Grace Hopper",
        "expected_response_time": "5-7 business days",
        "team": "Platform",
    }
    assert sent["job_title"] == "Backend Engineer"


@pytest.mark.asyncio
async def test_refused_email_is_retried_then_failed(processors, dispatcher, email_service, clock):
    email_service.refuse = True
    job_id = await dispatcher.add_email_job(
        {
            "template_name": "follow_up",
            "recipient_email": "ada@example.com",
            "recipient_name": "Ada Lovelace",
        }
    )

    for _ in range(3):
        await dispatcher.run_once("email")
        clock.advance(seconds=10)

    job = await dispatcher.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.attempts == 3
    assert job.last_error.startswith("ExternalServiceError: email:")


@pytest.mark.asyncio
async def test_processing_twice_enqueues_one_email(processors, dispatcher):
    payload = WorkflowActionPayload.model_validate(action("send_email"))
    job = ActionJob(queue="workflow", lane="execute-action")

    first = await processors.workflow.process(payload, job)
    second = await processors.workflow.process(payload, job)

    assert first == second
    stats = await dispatcher.get_queue_stats()
    assert stats["email"]["waiting"] == 1


@pytest.mark.asyncio
async def test_schedule_interview_books_calendar_and_notifies(
    processors, dispatcher, services, email_service, calendar_service
):
    await dispatcher.add_workflow_action_job(
        action(
            "schedule_interview",
            scheduled_date="2025-01-08T14:00:00Z",
            duration=45,
            participants=["E1", "E2", "E404"],
            meeting_link="https://meet.example.com/abc",
        )
    )

    await dispatcher.drain()

    [record] = services.interviews.interviews.values()
    assert record.duration == 45
    assert record.stage == "screening"
    assert record.calendar_event_id == "evt-1"
    [event] = calendar_service.events
    assert event.attendees == ["ada@example.com", "grace@example.com", "alan@example.com"]
    assert event.end_time == datetime(2025, 1, 8, 14, 45, tzinfo=timezone.utc)

    templates = [(s["template_name"], s["recipient_email"]) for s in email_service.sent]
    assert templates[0] == ("interview_invitation", "ada@example.com")
    assert sorted(templates[1:]) == [
        ("interviewer_notification", "alan@example.com"),
        ("interviewer_notification", "grace@example.com"),
    ]
    invitation = email_service.sent[0]["variables"]
    assert invitation["interview_date"] == "2025-01-08"
    assert invitation["interview_time"] == "14:00"
    assert invitation["recruiter_name"] == "Grace Hopper"


@pytest.mark.asyncio
async def test_calendar_failure_does_not_fail_interview(
    processors, dispatcher, services, email_service, calendar_service
):
    calendar_service.fail = True
    await dispatcher.add_workflow_action_job(
        action("schedule_interview", scheduled_date="2025-01-08T14:00:00Z", participants=["E1"])
    )

    await dispatcher.drain()

    [record] = services.interviews.interviews.values()
    assert record.calendar_event_id is None
    assert [s["template_name"] for s in email_service.sent] == [
        "interview_invitation",
        "interviewer_notification",
    ]


@pytest.mark.asyncio
async def test_schedule_interview_without_date_fails_permanently(processors, dispatcher):
    job_id = await dispatcher.add_workflow_action_job(action("schedule_interview"))

    await dispatcher.drain()

    job = await dispatcher.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.attempts == 1
    assert "scheduled_date" in job.last_error


@pytest.mark.asyncio
async def test_missing_candidate_fails_without_retry(processors, dispatcher):
    data = action("send_email")
    data["candidate_id"] = "C404"
    job_id = await dispatcher.add_workflow_action_job(data)

    await dispatcher.drain()

    job = await dispatcher.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.attempts == 1


@pytest.mark.asyncio
async def test_assign_assessment_sets_deadline(processors, dispatcher, email_service):
    job_id = await dispatcher.add_workflow_action_job(
        action("assign_assessment", assessment_type="coding", deadline_days=3)
    )

    await dispatcher.drain()

    job = await dispatcher.get_job(job_id)
    assert job.result["assessment_type"] == "coding"
    assert job.result["deadline"].startswith("2025-01-09")
    [sent] = email_service.sent
    assert sent["template_name"] == "assessment_invitation"
    assert sent["variables"]["deadline"] == "2025-01-09"
    assert sent["variables"]["assessment_title"] == "Backend Engineer Assessment"


@pytest.mark.asyncio
async def test_verify_assessment_reports_pass(processors, dispatcher, email_service):
    job_id = await dispatcher.add_workflow_action_job(
        action(
            "verify_assessment",
            assessment_completed=True,
            score=82,
            passing_score=75,
            notify_candidate=True,
        )
    )

    await dispatcher.drain()

    job = await dispatcher.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"passed": True, "completed": True, "score": 82, "passing_score": 75}
    assert [s["template_name"] for s in email_service.sent] == ["assessment_passed"]


@pytest.mark.asyncio
async def test_verify_assessment_failure_is_a_result(processors, dispatcher, email_service):
    job_id = await dispatcher.add_workflow_action_job(
        action("verify_assessment", assessment_completed=True, score=50, notify_candidate=True)
    )

    await dispatcher.drain()

    job = await dispatcher.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result["passed"] is False
    assert job.result["passing_score"] == 70
    assert email_service.sent == []


@pytest.mark.asyncio
async def test_add_calendar_event_becomes_interview_schedule(processors, dispatcher, services):
    await dispatcher.add_workflow_action_job(
        action(
            "add_calendar_event",
            title="Onsite loop",
            start_time="2025-01-09T10:00:00Z",
            end_time="2025-01-09T11:30:00Z",
            attendees=["E1"],
        )
    )

    await dispatcher.drain()

    [record] = services.interviews.interviews.values()
    assert record.title == "Onsite loop"
    assert record.duration == 90


@pytest.mark.asyncio
async def test_offer_letter_goes_out_with_high_priority(processors, dispatcher, email_service):
    await dispatcher.add_workflow_action_job(action("generate_offer_letter"))

    workflow_job = await dispatcher.run_once("workflow")
    email_job = await dispatcher.get_job(workflow_job.result)
    assert email_job.lane == "high-priority"

    await dispatcher.drain()
    [sent] = email_service.sent
    assert sent["template_name"] == "offer_letter"
    assert sent["use_ai_personalization"] is True
    variables = sent["variables"]
    assert variables["salary"] == "USD 100000 - 130000"
    assert variables["start_date"] == "2025-01-20"
    assert variables["response_deadline"] == "2025-01-13"
    assert variables["benefits"] == "Standard benefits package"


@pytest.mark.asyncio
async def test_stage_change_notification_for_hiring_manager(processors, dispatcher, email_service):
    await dispatcher.add_notification_job(
        {
            "type": "candidate_stage_change",
            "recipient_id": "E1",
            "recipient_type": "hiring_manager",
            "data": {
                "job_id": "J1",
                "candidate_name": "Ada Lovelace",
                "old_stage": "Screening",
                "new_stage": "Interview",
            },
        }
    )

    await dispatcher.drain()

    [sent] = email_service.sent
    assert sent["template_name"] == "stage_update_recruiter"
    assert sent["recipient_email"] == "grace@example.com"
    assert sent["variables"]["candidate_name"] == "Ada Lovelace"
    assert sent["variables"]["new_stage"] == "Interview"
    assert sent["variables"]["company_name"] == "Company"


@pytest.mark.asyncio
async def test_one_hour_interview_reminder_is_urgent(processors, dispatcher, email_service):
    await dispatcher.add_notification_job(
        {
            "type": "interview_reminder",
            "recipient_id": "C1",
            "recipient_type": "candidate",
            "data": {"scheduled_date": "2025-01-06T10:00:00Z", "reminder_type": "1h"},
        }
    )

    notification = await dispatcher.run_once("notification")
    assert notification.status == JobStatus.COMPLETED

    await dispatcher.drain()
    [sent] = email_service.sent
    assert sent["template_name"] == "interview_reminder_1h"
    assert sent["variables"]["hours_until"] == 1


@pytest.mark.asyncio
async def test_assessment_due_soon_is_high_priority(processors, dispatcher, clock):
    await dispatcher.add_notification_job(
        {
            "type": "assessment_due",
            "recipient_id": "C1",
            "recipient_type": "candidate",
            "data": {"due_date": "2025-01-07T08:30:00Z"},
        }
    )
    await dispatcher.run_once("notification")

    stats = await dispatcher.get_queue_stats()
    assert stats["email"]["waiting"] == 1
    email = await dispatcher.store.claim("email", "high-priority", clock.now)
    assert email.lane == "high-priority"
    assert email.payload["variables"]["hours_until"] == 24


@pytest.mark.asyncio
async def test_application_received_for_recruiter(processors, dispatcher, email_service):
    await dispatcher.add_notification_job(
        {
            "type": "application_received",
            "recipient_id": "E2",
            "recipient_type": "recruiter",
            "data": {"candidate_id": "C1", "job_id": "J1"},
        }
    )

    await dispatcher.drain()

    [sent] = email_service.sent
    assert sent["template_name"] == "new_application_notification"
    assert sent["recipient_email"] == "alan@example.com"
    assert sent["variables"]["candidate_email"] == "ada@example.com"
    assert sent["variables"]["application_date"] == "2025-01-06"


@pytest.mark.asyncio
async def test_sms_only_notification_sends_nothing(processors, dispatcher, email_service):
    job_id = await dispatcher.add_notification_job(
        {
            "type": "application_received",
            "recipient_id": "C1",
            "recipient_type": "candidate",
            "data": {"candidate_id": "C1", "job_id": "J1"},
            "channels": ["sms"],
        }
    )

    await dispatcher.drain()

    assert (await dispatcher.get_job(job_id)).status == JobStatus.COMPLETED
    assert email_service.sent == []


def test_every_configured_lane_needs_a_processor(services, clock):
    settings = QueueSettings(queues={"sms": QueueSpec(lanes={"send-sms": 1})})
    dispatcher = ActionQueueDispatcher(InMemoryJobStore(), settings, clock=clock)

    with pytest.raises(ConfigurationError, match="sms/send-sms"):
        build_processors(dispatcher, services, clock)


@pytest.mark.asyncio
async def test_incomplete_assessment_without_score_is_a_result(processors, dispatcher, email_service):
    job_id = await dispatcher.add_workflow_action_job(
        action("verify_assessment", assessment_completed=False, score=None, passing_score=None)
    )

    await dispatcher.drain()

    job = await dispatcher.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"passed": False, "completed": False, "score": 0, "passing_score": 70}
    assert email_service.sent == []


@pytest.mark.asyncio
async def test_email_delivery_key_follows_job_key(processors, dispatcher, email_service):
    await dispatcher.add_email_job(
        {
            "template_name": "welcome",
            "recipient_email": "ada@example.com",
            "recipient_name": "Ada Lovelace",
        },
        idempotency_key="welcome-C1",
    )

    await dispatcher.drain()

    [sent] = email_service.sent
    assert sent["idempotency_key"] == "welcome-C1"


@pytest.mark.asyncio
async def test_email_retry_reuses_delivery_key(dispatcher, directory, calendar_service, clock):
    keys = []

    def mail_api(request):
        keys.append(request.headers.get("Idempotency-Key"))
        if len(keys) == 1:
            raise httpx.ReadTimeout("response lost", request=request)
        return httpx.Response(200, json={"sent": True})

    email = HttpEmailDeliveryService(
        ServiceEndpoint(base_url="https://mail.example.com", api_key="token"),
        transport=httpx.MockTransport(mail_api),
    )
    services = Services(
        directory=directory,
        email=email,
        calendar=calendar_service,
        interviews=InMemoryInterviewStore(),
    )
    build_processors(dispatcher, services, clock)
    job_id = await dispatcher.add_email_job(
        {
            "template_name": "follow_up",
            "recipient_email": "ada@example.com",
            "recipient_name": "Ada Lovelace",
        }
    )

    first = await dispatcher.run_once("email")
    assert first.status == JobStatus.DELAYED
    clock.advance(seconds=10)
    second = await dispatcher.run_once("email")
    await email.aclose()

    assert second.status == JobStatus.COMPLETED
    assert (await dispatcher.get_job(job_id)).attempts == 2
    assert len(keys) == 2
    assert keys[0] is not None
    assert keys[0] == keys[1]
