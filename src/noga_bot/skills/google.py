"""Google Calendar and Google Tasks (shopping list) clients.

The discovery-based client is synchronous, so every request runs in a worker
thread via ``asyncio.to_thread`` to keep the event loop free.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from noga_bot.config import GoogleConfig
from noga_bot.log import get_logger

logger = get_logger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/tasks",
]


def build_credentials(config: GoogleConfig) -> Credentials:
    return Credentials(
        token=None,
        refresh_token=config.refresh_token,
        client_id=config.client_id,
        client_secret=config.client_secret,
        token_uri=TOKEN_URI,
        scopes=SCOPES,
    )


class _GoogleClient:
    """Shared request plumbing for the discovery-based clients.

    The service's httplib2 transport is not thread-safe, so requests on one
    client run one at a time.
    """

    def __init__(self, config: GoogleConfig | None, service: Any = None):
        self._config = config
        self._service = service
        self._lock = asyncio.Lock()

    async def _execute(self, request: Any) -> Any:
        async with self._lock:
            return await asyncio.to_thread(request.execute)


class CalendarClient(_GoogleClient):
    """List and create events on one Google calendar."""

    @property
    def available(self) -> bool:
        return self._service is not None

    async def start(self) -> None:
        if self._service is not None:
            return
        if not self._config:
            logger.warning("google_calendar_not_configured")
            return
        try:
            self._service = await asyncio.to_thread(
                build, "calendar", "v3", credentials=build_credentials(self._config), cache_discovery=False
            )
            logger.info("google_calendar_initialized", calendar_id=self._config.calendar_id)
        except Exception as e:
            logger.error("google_calendar_init_failed", error=str(e))

    def status(self) -> dict[str, Any]:
        return {"available": self.available}

    async def list_events(self, start_date: str, end_date: str | None = None) -> dict[str, Any]:
        if not self._service or not self._config:
            return {"success": False, "error": "Calendar not available"}
        tz = ZoneInfo(self._config.timezone)
        try:
            start = datetime.combine(date.fromisoformat(start_date), datetime.min.time(), tz)
            end_day = date.fromisoformat(end_date) if end_date else start.date()
            end = datetime.combine(end_day, datetime.max.time(), tz)
        except ValueError as e:
            return {"success": False, "error": f"Invalid date: {e}"}

        logger.info("calendar_list_events", start=start_date, end=end_date or start_date)
        try:
            response = await self._execute(
                self._service.events().list(
                    calendarId=self._config.calendar_id,
                    timeMin=start.isoformat(),
                    timeMax=end.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    maxResults=20,
                )
            )
        except Exception as e:
            logger.error("calendar_list_events_failed", error=str(e))
            return {"success": False, "error": str(e)}

        events = [
            {
                "id": item.get("id"),
                "title": item.get("summary") or "ללא כותרת",
                "description": item.get("description", ""),
                "start": item["start"].get("dateTime") or item["start"].get("date"),
                "end": item["end"].get("dateTime") or item["end"].get("date"),
                "location": item.get("location", ""),
                "all_day": "dateTime" not in item["start"],
            }
            for item in response.get("items", [])
        ]
        return {"success": True, "count": len(events), "events": events}

    async def add_event(
        self,
        title: str,
        event_date: str,
        time: str | None = None,
        duration_minutes: int = 60,
        description: str = "",
    ) -> dict[str, Any]:
        if not self._service or not self._config:
            return {"success": False, "error": "Calendar not available"}
        try:
            day = date.fromisoformat(event_date)
            if time:
                start = datetime.combine(day, datetime.strptime(time, "%H:%M").time())
                end = start + timedelta(minutes=duration_minutes)
                body = {
                    "summary": title,
                    "description": description,
                    # Naive local times so Google applies the timeZone field.
                    "start": {"dateTime": start.strftime("%Y-%m-%dT%H:%M:00"), "timeZone": self._config.timezone},
                    "end": {"dateTime": end.strftime("%Y-%m-%dT%H:%M:00"), "timeZone": self._config.timezone},
                }
            else:
                body = {
                    "summary": title,
                    "description": description,
                    "start": {"date": day.isoformat()},
                    "end": {"date": (day + timedelta(days=1)).isoformat()},
                }
        except ValueError as e:
            return {"success": False, "error": f"Invalid date or time: {e}"}

        logger.info("calendar_add_event", title=title, date=event_date, time=time)
        try:
            created = await self._execute(
                self._service.events().insert(calendarId=self._config.calendar_id, body=body)
            )
        except Exception as e:
            logger.error("calendar_add_event_failed", error=str(e))
            return {"success": False, "error": str(e)}
        return {
            "success": True,
            "event": {"id": created.get("id"), "title": created.get("summary"), "link": created.get("htmlLink")},
        }


class ShoppingListClient(_GoogleClient):
    """Shopping list stored as a Google Tasks list, located by title."""

    def __init__(self, config: GoogleConfig | None, service: Any = None, list_id: str | None = None):
        super().__init__(config, service)
        self._list_id = list_id

    @property
    def available(self) -> bool:
        return self._service is not None and self._list_id is not None

    async def start(self) -> None:
        if not self._config:
            logger.warning("google_tasks_not_configured")
            return
        try:
            if self._service is None:
                self._service = await asyncio.to_thread(
                    build, "tasks", "v1", credentials=build_credentials(self._config), cache_discovery=False
                )
            if self._list_id is None:
                self._list_id = await self._ensure_list()
            logger.info("google_tasks_initialized", list_id=self._list_id)
        except Exception as e:
            logger.error("google_tasks_init_failed", error=str(e))

    async def _ensure_list(self) -> str:
        wanted = {n.casefold() for n in self._config.shopping_list_names}
        response = await self._execute(self._service.tasklists().list())
        for item in response.get("items", []):
            if item.get("title", "").casefold() in wanted:
                return item["id"]
        created = await self._execute(
            self._service.tasklists().insert(body={"title": self._config.default_shopping_list})
        )
        logger.info("shopping_list_created", list_id=created["id"])
        return created["id"]

    def status(self) -> dict[str, Any]:
        return {"available": self.available, "list_id": self._list_id}

    async def add_item(self, item: str) -> dict[str, Any]:
        if not self.available:
            return {"success": False, "error": "Shopping list not available"}
        try:
            created = await self._execute(self._service.tasks().insert(tasklist=self._list_id, body={"title": item}))
        except Exception as e:
            logger.error("shopping_add_failed", item=item, error=str(e))
            return {"success": False, "error": str(e)}
        logger.info("shopping_item_added", item=item)
        return {"success": True, "item": {"id": created.get("id"), "title": created.get("title")}}

    async def list_items(self) -> dict[str, Any]:
        if not self.available:
            return {"success": False, "error": "Shopping list not available"}
        try:
            response = await self._execute(
                self._service.tasks().list(tasklist=self._list_id, showCompleted=False, maxResults=100)
            )
        except Exception as e:
            logger.error("shopping_list_failed", error=str(e))
            return {"success": False, "error": str(e)}
        items = [
            {"id": t.get("id"), "title": t.get("title"), "notes": t.get("notes", "")}
            for t in response.get("items", [])
        ]
        return {"success": True, "count": len(items), "items": items}

    async def complete_item(self, item: str) -> dict[str, Any]:
        match = await self._find(item)
        if "error" in match:
            return match
        try:
            await self._execute(
                self._service.tasks().patch(
                    tasklist=self._list_id, task=match["id"], body={"status": "completed"}
                )
            )
        except Exception as e:
            logger.error("shopping_complete_failed", item=item, error=str(e))
            return {"success": False, "error": str(e)}
        return {"success": True, "item": match}

    async def delete_item(self, item: str) -> dict[str, Any]:
        match = await self._find(item)
        if "error" in match:
            return match
        try:
            await self._execute(self._service.tasks().delete(tasklist=self._list_id, task=match["id"]))
        except Exception as e:
            logger.error("shopping_delete_failed", item=item, error=str(e))
            return {"success": False, "error": str(e)}
        return {"success": True, "deleted": match["title"]}

    async def _find(self, item: str) -> dict[str, Any]:
        """Find an open item whose title contains *item* or is contained in it."""
        listing = await self.list_items()
        if not listing.get("success"):
            return {"success": False, "error": listing.get("error", "Shopping list not available")}
        needle = item.casefold().strip()
        for entry in listing["items"]:
            title = (entry["title"] or "").casefold()
            if title and (needle in title or title in needle):
                return {"id": entry["id"], "title": entry["title"]}
        return {"success": False, "error": f'"{item}" is not on the shopping list'}
