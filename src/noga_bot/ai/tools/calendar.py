"""Calendar tools backed by Google Calendar."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from noga_bot.ai.tools.base import Tool, ToolArgs
from noga_bot.skills.google import CalendarClient


class ListEventsArgs(ToolArgs):
    start_date: str = Field(description="Start date in YYYY-MM-DD format.")
    end_date: Optional[str] = Field(default=None, description="End date in YYYY-MM-DD format (optional).")


class AddEventArgs(ToolArgs):
    title: str = Field(description="Event title.")
    date: str = Field(description="Event date in YYYY-MM-DD format.")
    time: Optional[str] = Field(default=None, description="Event time in HH:MM format (optional).")
    duration_minutes: int = Field(default=60, ge=1, le=24 * 60, description="Duration in minutes, default 60.")
    description: str = Field(default="", description="Event description (optional).")


class ListCalendarEventsTool(Tool):
    args_model = ListEventsArgs

    def __init__(self, calendar: CalendarClient):
        self._calendar = calendar

    @property
    def name(self) -> str:
        return "list_calendar_events"

    @property
    def description(self) -> str:
        return "רשימת אירועים מהיומן לטווח תאריכים. Get calendar events for a date range."

    async def execute(self, args: ListEventsArgs) -> dict[str, Any]:
        return await self._calendar.list_events(args.start_date, args.end_date)


class AddCalendarEventTool(Tool):
    args_model = AddEventArgs

    def __init__(self, calendar: CalendarClient):
        self._calendar = calendar

    @property
    def name(self) -> str:
        return "add_calendar_event"

    @property
    def description(self) -> str:
        return "הוסף אירוע חדש ליומן. Add a new event to the calendar."

    async def execute(self, args: AddEventArgs) -> dict[str, Any]:
        return await self._calendar.add_event(
            title=args.title,
            event_date=args.date,
            time=args.time,
            duration_minutes=args.duration_minutes,
            description=args.description,
        )
