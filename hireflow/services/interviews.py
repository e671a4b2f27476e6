"""Interview records created by the schedule processor."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel, Field


class InterviewRecord(BaseModel):
    interview_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    candidate_id: str
    job_id: str
    company_id: str
    title: str
    type: str = "video"
    scheduled_date: datetime
    duration: int = 60
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    round: int = 1
    stage: Optional[str] = None
    notes: Optional[str] = None
    status: str = "scheduled"
    interviewer_ids: List[str] = Field(default_factory=list)
    calendar_event_id: Optional[str] = None
    idempotency_key: Optional[str] = None


class InterviewStore(Protocol):
    async def create_interview(self, record: InterviewRecord) -> InterviewRecord:
        """Persist ``record``; a repeated idempotency key returns the first record."""

    async def attach_calendar_event(self, interview_id: str, event_id: str) -> None:
        """Remember the calendar event booked for an interview."""


class InMemoryInterviewStore:
    def __init__(self) -> None:
        self.interviews: Dict[str, InterviewRecord] = {}
        self._by_key: Dict[str, str] = {}

    async def create_interview(self, record: InterviewRecord) -> InterviewRecord:
        if record.idempotency_key and record.idempotency_key in self._by_key:
            return self.interviews[self._by_key[record.idempotency_key]]
        self.interviews[record.interview_id] = record
        if record.idempotency_key:
            self._by_key[record.idempotency_key] = record.interview_id
        return record

    async def attach_calendar_event(self, interview_id: str, event_id: str) -> None:
        self.interviews[interview_id].calendar_event_id = event_id
