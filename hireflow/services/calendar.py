"""Calendar collaborator."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from .http import HttpServiceClient


class CalendarEvent(BaseModel):
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    attendees: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    meeting_link: Optional[str] = None


class ConflictReport(BaseModel):
    has_conflicts: bool = False
    conflicts: List[Dict[str, Any]] = Field(default_factory=list)


class CalendarService(Protocol):
    async def create_event(self, event: CalendarEvent) -> Optional[str]:
        """Create an event and return its id."""

    async def update_event(self, event_id: str, patch: Dict[str, Any]) -> bool:
        """Apply a partial update to an event."""

    async def delete_event(self, event_id: str) -> bool:
        """Delete an event."""

    async def check_conflicts(
        self, start: datetime, end: datetime, attendees: List[str]
    ) -> ConflictReport:
        """Report attendee conflicts in the given window."""


class HttpCalendarService(HttpServiceClient):
    service_name = "calendar"

    async def create_event(self, event: CalendarEvent) -> Optional[str]:
        body = await self._request("POST", "/events", json=event.model_dump(mode="json"))
        return body.get("id") if body else None

    async def update_event(self, event_id: str, patch: Dict[str, Any]) -> bool:
        await self._request("PATCH", f"/events/{event_id}", json=patch)
        return True

    async def delete_event(self, event_id: str) -> bool:
        await self._request("DELETE", f"/events/{event_id}")
        return True

    async def check_conflicts(
        self, start: datetime, end: datetime, attendees: List[str]
    ) -> ConflictReport:
        body = await self._request(
            "POST",
            "/conflicts",
            json={
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
                "attendees": attendees,
            },
        )
        return ConflictReport.model_validate(body or {})
