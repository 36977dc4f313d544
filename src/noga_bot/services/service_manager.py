"""Service lifecycle manager."""

from __future__ import annotations

from noga_bot.log import get_logger
from noga_bot.services.base import Service

logger = get_logger(__name__)


class ServiceManager:
    """Starts services in registration order and stops them in reverse."""

    def __init__(self) -> None:
        self._services: list[Service] = []
        self._started: list[Service] = []

    def add(self, service: Service) -> None:
        self._services.append(service)

    def get(self, name: str) -> Service | None:
        return next((s for s in self._services if s.service_name == name), None)

    async def start_all(self) -> None:
        """Start all services. Non-critical failures are logged and skipped."""
        for service in self._services:
            try:
                await service.start()
            except Exception as e:
                if service.critical:
                    raise
                logger.warning("service_unavailable", service=service.service_name, error=str(e))
                continue
            self._started.append(service)
        logger.info("all_services_started", count=len(self._started))

    async def stop_all(self) -> None:
        """Stop started services gracefully, newest first."""
        for service in reversed(self._started):
            try:
                await service.stop()
            except Exception as e:
                logger.error("service_stop_error", service=service.service_name, error=str(e))
        self._started.clear()
        logger.info("all_services_stopped")

    async def health_check_all(self) -> dict[str, bool]:
        return {s.service_name: await s.health_check() for s in self._services}
