"""Tool registry: the fixed catalog of tools the model may call."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from noga_bot.ai.tools.base import Tool
from noga_bot.log import get_logger

if TYPE_CHECKING:
    from noga_bot.skills.google import CalendarClient, ShoppingListClient
    from noga_bot.skills.home_assistant import HomeAssistantClient
    from noga_bot.storage.admin_repo import AdminRepository

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of all available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def definitions(self) -> list[dict[str, Any]]:
        return [t.to_definition() for t in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    @classmethod
    def build_default(
        cls,
        calendar: CalendarClient,
        shopping: ShoppingListClient,
        home_assistant: HomeAssistantClient,
        admin_repo: AdminRepository,
    ) -> ToolRegistry:
        """Register the built-in calendar, shopping-list and device tools."""
        from noga_bot.ai.tools.calendar import AddCalendarEventTool, ListCalendarEventsTool
        from noga_bot.ai.tools.devices import (
            ControlDeviceTool,
            FindDeviceTool,
            GetDeviceStateTool,
            ListDevicesTool,
            SetLightBrightnessTool,
        )
        from noga_bot.ai.tools.shopping import (
            AddShoppingItemTool,
            CompleteShoppingItemTool,
            DeleteShoppingItemTool,
            GetShoppingListTool,
        )

        registry = cls()
        for tool in (
            ListCalendarEventsTool(calendar),
            AddCalendarEventTool(calendar),
            AddShoppingItemTool(shopping),
            GetShoppingListTool(shopping),
            CompleteShoppingItemTool(shopping),
            DeleteShoppingItemTool(shopping),
            ControlDeviceTool(home_assistant, admin_repo),
            GetDeviceStateTool(home_assistant, admin_repo),
            ListDevicesTool(home_assistant),
            FindDeviceTool(home_assistant),
            SetLightBrightnessTool(home_assistant, admin_repo),
        ):
            registry.register(tool)
        logger.info("tools_registered", count=len(registry))
        return registry
