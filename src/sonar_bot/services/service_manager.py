"""Service lifecycle manager."""

from __future__ import annotations

from sonar_bot.log import get_logger
from sonar_bot.services.base import Service

logger = get_logger(__name__)


class ServiceManager:
    """Starts services in registration order and stops them in reverse."""

    def __init__(self) -> None:
        self._services: list[Service] = []

    def register(self, service: Service) -> None:
        self._services.append(service)

    async def start_all(self) -> None:
        for service in self._services:
            await service.start()
        logger.info("all_services_started", services=[s.service_name for s in self._services])

    async def stop_all(self) -> None:
        """Stop all services gracefully. A failing stop does not block the rest."""
        for service in reversed(self._services):
            try:
                await service.stop()
            except Exception as e:
                logger.error("service_stop_error", service=service.service_name, error=str(e))
        logger.info("all_services_stopped")

    async def health_check_all(self) -> dict[str, bool]:
        """Check health of all services."""
        return {s.service_name: await s.health_check() for s in self._services}
