"""HTTP service client tests against an httpx mock transport."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from hireflow.config import ServiceEndpoint, ServicesConfig
from hireflow.directory import InMemoryDirectory
from hireflow.errors import ConfigurationError, ExternalServiceError
from hireflow.services import (
    CalendarEvent,
    HttpAIMatchingService,
    HttpCalendarService,
    HttpEmailDeliveryService,
    build_http_services,
)

ENDPOINT = ServiceEndpoint(base_url="https://svc.example.com", api_key="token-123")


class Recorder:
    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses[(request.method, request.url.path)]


@pytest.mark.asyncio
async def test_email_service_posts_template_and_reads_verdict():
    recorder = Recorder({("POST", "/emails/personalized"): httpx.Response(200, json={"sent": True})})
    service = HttpEmailDeliveryService(ENDPOINT, transport=httpx.MockTransport(recorder))

    sent = await service.send_personalized_email(
        template_name="welcome",
        recipient_email="ada@example.com",
        recipient_name="Ada Lovelace",
        variables={"job_title": "Backend Engineer"},
    )
    await service.aclose()

    assert sent is True
    [request] = recorder.requests
    assert request.headers["Authorization"] == "Bearer token-123"
    body = json.loads(request.content)
    assert body["template_name"] == "welcome"
    assert body["variables"] == {"job_title": "Backend Engineer"}
    assert body["use_ai_personalization"] is False


@pytest.mark.asyncio
async def test_email_refusal_is_false():
    recorder = Recorder({("POST", "/emails/personalized"): httpx.Response(200, json={"sent": False})})
    service = HttpEmailDeliveryService(ENDPOINT, transport=httpx.MockTransport(recorder))

    assert await service.send_personalized_email("x", "ada@example.com", "Ada", {}) is False


@pytest.mark.asyncio
async def test_server_error_becomes_external_service_error():
    recorder = Recorder({("POST", "/events"): httpx.Response(503, text="down")})
    service = HttpCalendarService(ENDPOINT, transport=httpx.MockTransport(recorder))
    event = CalendarEvent(
        title="Interview",
        start_time=datetime(2025, 1, 8, 14, tzinfo=timezone.utc),
        end_time=datetime(2025, 1, 8, 15, tzinfo=timezone.utc),
    )

    with pytest.raises(ExternalServiceError) as excinfo:
        await service.create_event(event)
    assert excinfo.value.service == "calendar"


@pytest.mark.asyncio
async def test_connection_error_becomes_external_service_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    service = HttpEmailDeliveryService(ENDPOINT, transport=httpx.MockTransport(refuse))

    with pytest.raises(ExternalServiceError):
        await service.send_personalized_email("x", "ada@example.com", "Ada", {})


@pytest.mark.asyncio
async def test_calendar_event_lifecycle():
    recorder = Recorder(
        {
            ("POST", "/events"): httpx.Response(201, json={"id": "evt-9"}),
            ("PATCH", "/events/evt-9"): httpx.Response(200, json={}),
            ("DELETE", "/events/evt-9"): httpx.Response(204),
            ("POST", "/conflicts"): httpx.Response(
                200, json={"has_conflicts": True, "conflicts": [{"attendee": "grace@example.com"}]}
            ),
        }
    )
    service = HttpCalendarService(ENDPOINT, transport=httpx.MockTransport(recorder))
    start = datetime(2025, 1, 8, 14, tzinfo=timezone.utc)
    end = datetime(2025, 1, 8, 15, tzinfo=timezone.utc)

    event_id = await service.create_event(
        CalendarEvent(title="Interview", start_time=start, end_time=end, attendees=["a@b.c"])
    )
    assert event_id == "evt-9"
    assert json.loads(recorder.requests[0].content)["attendees"] == ["a@b.c"]
    assert await service.update_event(event_id, {"location": "Room 4"}) is True
    assert await service.delete_event(event_id) is True

    report = await service.check_conflicts(start, end, ["grace@example.com"])
    assert report.has_conflicts is True
    assert report.conflicts == [{"attendee": "grace@example.com"}]


@pytest.mark.asyncio
async def test_ai_matching_parses_result():
    recorder = Recorder(
        {
            ("POST", "/match"): httpx.Response(
                200,
                json={"overall_score": 81.5, "breakdown": {"skills": 90}, "reasons": ["python"]},
            )
        }
    )
    service = HttpAIMatchingService(ENDPOINT, transport=httpx.MockTransport(recorder))

    result = await service.match_candidate_to_job({"skills": ["python"]}, {"job_id": "J1"})

    assert result.overall_score == 81.5
    assert result.breakdown == {"skills": 90}
    assert json.loads(recorder.requests[0].content) == {
        "candidate": {"skills": ["python"]},
        "job": {"job_id": "J1"},
    }


def test_missing_endpoint_settings_are_configuration_errors():
    with pytest.raises(ConfigurationError, match="base_url"):
        HttpEmailDeliveryService(ServiceEndpoint(api_key="x"))
    with pytest.raises(ConfigurationError, match="api_key"):
        HttpCalendarService(ServiceEndpoint(base_url="https://cal.example.com"))


def test_build_http_services_requires_email_and_calendar():
    with pytest.raises(ConfigurationError):
        build_http_services(ServicesConfig(), InMemoryDirectory())

    services = build_http_services(
        ServicesConfig(email=ENDPOINT, calendar=ENDPOINT), InMemoryDirectory()
    )
    assert services.ai is None
    assert isinstance(services.email, HttpEmailDeliveryService)
