"""Smart-home device tools backed by Home Assistant."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import Field

from noga_bot.ai.entity_resolver import looks_like_entity_id, resolve
from noga_bot.ai.tools.base import Tool, ToolArgs
from noga_bot.errors import EntityNotFound
from noga_bot.log import get_logger
from noga_bot.skills.home_assistant import HomeAssistantClient
from noga_bot.storage.admin_repo import AdminRepository

logger = get_logger(__name__)


class ControlDeviceArgs(ToolArgs):
    entity_id: str = Field(min_length=1, description="Entity ID (e.g. light.living_room) or device name.")
    action: Literal["turn_on", "turn_off", "toggle"] = Field(description="Action to perform.")


class DeviceStateArgs(ToolArgs):
    entity_id: str = Field(min_length=1, description="Entity ID or device/sensor name.")


class ListDevicesArgs(ToolArgs):
    type: Optional[str] = Field(default=None, description="Device type filter (light, switch, sensor, climate).")


class FindDeviceArgs(ToolArgs):
    name: str = Field(min_length=1, description="Device name to search.")
    type: Optional[str] = Field(default=None, description="Device type (optional).")


class BrightnessArgs(ToolArgs):
    entity_id: str = Field(min_length=1, description="Light entity ID or name.")
    brightness: float = Field(ge=0, le=100, description="Brightness percentage (0-100).")


class _ResolvingDeviceTool(Tool):
    """Device tool that accepts either an entity id or a natural-language name."""

    def __init__(self, home_assistant: HomeAssistantClient, admin_repo: AdminRepository):
        self._ha = home_assistant
        self._admin_repo = admin_repo

    async def _resolve_entity(self, reference: str) -> str:
        if looks_like_entity_id(reference):
            return reference
        mappings = await self._admin_repo.list_device_mappings()
        try:
            entity_id = resolve(reference, mappings)
            logger.info("entity_resolved", reference=reference, entity_id=entity_id, source="mapping")
            return entity_id
        except EntityNotFound:
            found = await self._ha.find_entity_by_name(reference)
            if found.get("success") and found.get("entities"):
                entity_id = found["entities"][0]["id"]
                logger.info("entity_resolved", reference=reference, entity_id=entity_id, source="friendly_name")
                return entity_id
            raise


class ControlDeviceTool(_ResolvingDeviceTool):
    args_model = ControlDeviceArgs

    @property
    def name(self) -> str:
        return "control_device"

    @property
    def description(self) -> str:
        return (
            "שלוט במכשיר בבית חכם - הדלק, כבה או החלף מצב. "
            "Control a smart home device - turn on, off, or toggle."
        )

    async def execute(self, args: ControlDeviceArgs) -> dict[str, Any]:
        try:
            entity_id = await self._resolve_entity(args.entity_id)
        except EntityNotFound as e:
            return {"success": False, "error": str(e)}
        return await self._ha.call_service(entity_id, args.action)


class GetDeviceStateTool(_ResolvingDeviceTool):
    args_model = DeviceStateArgs

    @property
    def name(self) -> str:
        return "get_device_state"

    @property
    def description(self) -> str:
        return (
            "קבל את מצב מכשיר בבית חכם (דולק/כבוי, טמפרטורה וכו׳). "
            "Get smart home device state."
        )

    async def execute(self, args: DeviceStateArgs) -> dict[str, Any]:
        try:
            entity_id = await self._resolve_entity(args.entity_id)
        except EntityNotFound as e:
            return {"success": False, "error": str(e)}
        if entity_id.startswith("sensor."):
            return await self._ha.get_sensor_reading(entity_id)
        return await self._ha.get_state(entity_id)


class SetLightBrightnessTool(_ResolvingDeviceTool):
    args_model = BrightnessArgs

    @property
    def name(self) -> str:
        return "set_light_brightness"

    @property
    def description(self) -> str:
        return "קבע עוצמת תאורה. Set light brightness."

    async def execute(self, args: BrightnessArgs) -> dict[str, Any]:
        try:
            entity_id = await self._resolve_entity(args.entity_id)
        except EntityNotFound as e:
            return {"success": False, "error": str(e)}
        return await self._ha.set_brightness(entity_id, args.brightness)


class ListDevicesTool(Tool):
    args_model = ListDevicesArgs

    def __init__(self, home_assistant: HomeAssistantClient):
        self._ha = home_assistant

    @property
    def name(self) -> str:
        return "list_devices"

    @property
    def description(self) -> str:
        return "הצג רשימת מכשירים בבית החכם. List smart home devices."

    async def execute(self, args: ListDevicesArgs) -> dict[str, Any]:
        return await self._ha.get_entities(args.type)


class FindDeviceTool(Tool):
    args_model = FindDeviceArgs

    def __init__(self, home_assistant: HomeAssistantClient):
        self._ha = home_assistant

    @property
    def name(self) -> str:
        return "find_device"

    @property
    def description(self) -> str:
        return "מצא מכשיר לפי שם. Find a device by name."

    async def execute(self, args: FindDeviceArgs) -> dict[str, Any]:
        return await self._ha.find_entity_by_name(args.name, args.type)
