"""External collaborators consumed by the action processors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import ServicesConfig
from ..directory import Directory
from .ai import AIMatchingService, AIScreeningReader, HttpAIMatchingService, MatchResult
from .calendar import CalendarEvent, CalendarService, ConflictReport, HttpCalendarService
from .email import EmailDeliveryService, HttpEmailDeliveryService
from .http import HttpServiceClient
from .interviews import InMemoryInterviewStore, InterviewRecord, InterviewStore


@dataclass
class Services:
    """Bundle of collaborators handed to the processors."""

    directory: Directory
    email: EmailDeliveryService
    calendar: CalendarService
    interviews: InterviewStore
    ai: Optional[AIMatchingService] = None

    async def aclose(self) -> None:
        """Close the HTTP clients among the collaborators."""
        for service in (self.email, self.calendar, self.ai):
            if isinstance(service, HttpServiceClient):
                await service.aclose()


def build_http_services(
    config: ServicesConfig,
    directory: Directory,
    interviews: Optional[InterviewStore] = None,
) -> Services:
    """Create HTTP-backed services. Missing endpoints raise ``ConfigurationError``."""
    ai = HttpAIMatchingService(config.ai) if config.ai.base_url else None
    return Services(
        directory=directory,
        email=HttpEmailDeliveryService(config.email),
        calendar=HttpCalendarService(config.calendar),
        interviews=interviews or InMemoryInterviewStore(),
        ai=ai,
    )


__all__ = [
    "AIMatchingService",
    "AIScreeningReader",
    "CalendarEvent",
    "CalendarService",
    "ConflictReport",
    "EmailDeliveryService",
    "HttpAIMatchingService",
    "HttpCalendarService",
    "HttpEmailDeliveryService",
    "InMemoryInterviewStore",
    "InterviewRecord",
    "InterviewStore",
    "MatchResult",
    "Services",
    "build_http_services",
]
