"""Lifecycle interface for long-running services owned by the application."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Service(ABC):
    """A component started after the messenger and stopped before it.

    ``critical`` services abort startup when they fail to start; the others
    only log the failure.
    """

    critical: bool = False

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...
