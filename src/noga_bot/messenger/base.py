"""Abstract messenger adapter interface and its listener protocol."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

from noga_bot.log import get_logger
from noga_bot.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)


class MessengerListener(Protocol):
    """Receives events from a messenger adapter."""

    async def on_message(self, message: IncomingMessage) -> None: ...

    async def on_ready(self) -> None: ...

    async def on_disconnected(self, reason: str) -> None: ...


class MessengerAdapter(ABC):
    """Base class for messenger platform adapters.

    Subclasses call the ``_emit_*`` helpers; registered listeners are
    notified in registration order.
    """

    def __init__(self) -> None:
        self._listeners: list[MessengerListener] = []

    def add_listener(self, listener: MessengerListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: MessengerListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving messages."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None:
        """Send a message to a specific chat."""
        ...

    @abstractmethod
    async def react(self, destination: str, message_id: str, emoji: str) -> None:
        """Put a reaction on a received message."""
        ...

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @property
    @abstractmethod
    def platform_name(self) -> str:
        ...

    async def _emit_message(self, message: IncomingMessage) -> None:
        for listener in list(self._listeners):
            try:
                await listener.on_message(message)
            except Exception as e:
                logger.error("listener_message_error", error=str(e), sender=message.sender)

    async def _emit_ready(self) -> None:
        for listener in list(self._listeners):
            await listener.on_ready()

    async def _emit_disconnected(self, reason: str) -> None:
        for listener in list(self._listeners):
            await listener.on_disconnected(reason)
