"""Home Assistant REST client.

Every public method returns a structured dict; backend failures come back as
``{"success": False, "error": ...}`` instead of raising, because results are
fed straight to the model.
"""

from __future__ import annotations

from typing import Any

import httpx

from noga_bot.config import HomeAssistantConfig
from noga_bot.log import get_logger

logger = get_logger(__name__)

NOT_AVAILABLE = {"success": False, "error": "Home Assistant not available"}


class HomeAssistantClient:
    """Thin async wrapper over the Home Assistant REST API."""

    def __init__(self, config: HomeAssistantConfig | None, transport: httpx.AsyncBaseTransport | None = None):
        self._config = config
        self._client: httpx.AsyncClient | None = None
        if config:
            self._client = httpx.AsyncClient(
                base_url=f"{config.url.rstrip('/')}/api",
                headers={
                    "Authorization": f"Bearer {config.token}",
                    "Content-Type": "application/json",
                },
                timeout=config.timeout,
                transport=transport,
            )

    @property
    def available(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        if not self._client:
            logger.warning("home_assistant_not_configured")
            return
        try:
            response = await self._client.get("/")
            response.raise_for_status()
            logger.info("home_assistant_connected", message=response.json().get("message"))
        except httpx.HTTPError as e:
            # Stay configured: Home Assistant may come up after us.
            logger.error("home_assistant_connect_failed", error=str(e))

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()

    def status(self) -> dict[str, Any]:
        return {"available": self.available, "url": self._config.url if self._config else None}

    async def get_entities(self, domain: str | None = None) -> dict[str, Any]:
        if not self._client:
            return dict(NOT_AVAILABLE)
        try:
            response = await self._client.get("/states")
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("ha_get_entities_failed", error=str(e))
            return {"success": False, "error": str(e)}

        entities = [
            {
                "id": entity["entity_id"],
                "state": entity.get("state"),
                "name": entity.get("attributes", {}).get("friendly_name") or entity["entity_id"],
                "type": entity["entity_id"].split(".")[0],
            }
            for entity in response.json()
        ]
        if domain:
            entities = [e for e in entities if e["type"] == domain]
        return {"success": True, "count": len(entities), "entities": entities}

    async def get_state(self, entity_id: str) -> dict[str, Any]:
        if not self._client:
            return dict(NOT_AVAILABLE)
        try:
            response = await self._client.get(f"/states/{entity_id}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("ha_get_state_failed", entity_id=entity_id, error=str(e))
            return {"success": False, "error": str(e)}

        data = response.json()
        attributes = data.get("attributes", {})
        return {
            "success": True,
            "entity": {
                "id": data["entity_id"],
                "state": data.get("state"),
                "name": attributes.get("friendly_name") or entity_id,
                "attributes": attributes,
                "last_changed": data.get("last_changed"),
            },
        }

    async def get_sensor_reading(self, entity_id: str) -> dict[str, Any]:
        result = await self.get_state(entity_id)
        if not result.get("success"):
            return result
        entity = result["entity"]
        unit = entity["attributes"].get("unit_of_measurement", "")
        return {
            "success": True,
            "name": entity["name"],
            "value": entity["state"],
            "unit": unit,
            "formatted": f"{entity['state']}{unit}",
        }

    async def call_service(self, entity_id: str, action: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        """Call ``<domain>.<action>`` on an entity and report the state read back afterwards."""
        if not self._client:
            return dict(NOT_AVAILABLE)
        domain = entity_id.split(".")[0]
        payload = {"entity_id": entity_id, **(data or {})}
        logger.info("ha_service_call", domain=domain, action=action, entity_id=entity_id)
        try:
            response = await self._client.post(f"/services/{domain}/{action}", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("ha_service_call_failed", entity_id=entity_id, action=action, status=e.response.status_code)
            return {"success": False, "error": str(e), "details": e.response.text[:500]}
        except httpx.HTTPError as e:
            logger.error("ha_service_call_failed", entity_id=entity_id, action=action, error=str(e))
            return {"success": False, "error": str(e)}

        new_state = await self.get_state(entity_id)
        return {
            "success": True,
            "entity_id": entity_id,
            "action": action,
            "new_state": new_state["entity"]["state"] if new_state.get("success") else "unknown",
        }

    async def set_brightness(self, entity_id: str, brightness: float) -> dict[str, Any]:
        # Values up to 100 are percentages; larger values are raw 0-255.
        value = round(brightness * 2.55) if brightness <= 100 else int(brightness)
        return await self.call_service(entity_id, "turn_on", {"brightness": max(0, min(255, value))})

    async def find_entity_by_name(self, name: str, domain: str | None = None) -> dict[str, Any]:
        """Friendly-name search: substring first, then all-words match."""
        result = await self.get_entities(domain)
        if not result.get("success"):
            return result

        search = name.lower().strip()
        words = [w for w in search.split() if len(w) > 1]
        entities = result["entities"]

        matches = [e for e in entities if search in e["name"].lower() or search in e["id"].lower()]
        if not matches and len(words) > 1:
            matches = [
                e
                for e in entities
                if all(w in e["name"].lower() or w in e["id"].lower() for w in words)
            ]

        logger.info("ha_entity_search", term=name, match_count=len(matches))
        if not matches:
            return {
                "success": False,
                "error": f'No device named "{name}". Try another name or call list_devices.',
            }
        return {"success": True, "count": len(matches), "entities": matches}
