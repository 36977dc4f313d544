"""Shared fixtures: temporary database, scripted AI client, in-memory messenger."""

from __future__ import annotations

import copy
from typing import Any

import pytest

from noga_bot.ai.client import AIClient, AIResponse, ToolCall
from noga_bot.ai.engine import ConversationEngine
from noga_bot.ai.tools.base import Tool, ToolArgs
from noga_bot.ai.tools.registry import ToolRegistry
from noga_bot.config import AIConfig
from noga_bot.messenger.base import MessengerAdapter
from noga_bot.messenger.models import OutgoingMessage
from noga_bot.storage.admin_repo import AdminRepository
from noga_bot.storage.conversation_repo import ConversationRepository
from noga_bot.storage.database import Database


def text_response(text: str) -> AIResponse:
    return AIResponse(text=text, input_tokens=10, output_tokens=5)


def tool_response(*calls: tuple[str, dict[str, Any]], text: str = "") -> AIResponse:
    return AIResponse(
        text=text,
        tool_calls=[ToolCall(id=f"call_{i}", name=name, input=args) for i, (name, args) in enumerate(calls)],
        input_tokens=10,
        output_tokens=5,
    )


class FakeAIClient(AIClient):
    """Returns scripted responses and records every request."""

    def __init__(self, responses: list[AIResponse | Exception] | None = None, repeat_last: bool = False):
        self.responses = list(responses or [])
        self.repeat_last = repeat_last
        self.calls: list[dict[str, Any]] = []
        self.audio = True

    @property
    def backend(self) -> str:
        return "fake"

    @property
    def model_name(self) -> str:
        return "fake-model"

    @property
    def supports_audio(self) -> bool:
        return self.audio

    async def chat(self, system, messages, tools=None, temperature=0.7, max_tokens=1024) -> AIResponse:
        self.calls.append(
            {
                "system": system,
                "messages": copy.deepcopy(messages),
                "tools": tools,
                "temperature": temperature,
            }
        )
        if not self.responses:
            return text_response("")
        item = self.responses[0] if self.repeat_last and len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeMessenger(MessengerAdapter):
    def __init__(self, ready: bool = True):
        super().__init__()
        self.ready = ready
        self.sent: list[OutgoingMessage] = []
        self.reactions: list[tuple[str, str, str]] = []

    @property
    def is_ready(self) -> bool:
        return self.ready

    @property
    def platform_name(self) -> str:
        return "fake"

    async def start(self) -> None:
        self.ready = True
        await self._emit_ready()

    async def stop(self) -> None:
        self.ready = False
        await self._emit_disconnected("stopped")

    async def send_message(self, message: OutgoingMessage) -> None:
        self.sent.append(message)

    async def react(self, destination: str, message_id: str, emoji: str) -> None:
        self.reactions.append((destination, message_id, emoji))


class EchoArgs(ToolArgs):
    value: str = ""


class EchoTool(Tool):
    args_model = EchoArgs

    def __init__(self, name: str = "echo"):
        self._name = name
        self.calls: list[EchoArgs] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "Echo the value back."

    async def execute(self, args: EchoArgs) -> dict[str, Any]:
        self.calls.append(args)
        return {"success": True, "value": args.value}


class BoomTool(Tool):
    @property
    def name(self) -> str:
        return "explode"

    @property
    def description(self) -> str:
        return "Always fails."

    async def execute(self, args: Any) -> dict[str, Any]:
        raise RuntimeError("boom")


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "noga.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def conversation_repo(db) -> ConversationRepository:
    return ConversationRepository(db)


@pytest.fixture
def admin_repo(db) -> AdminRepository:
    return AdminRepository(db)


@pytest.fixture
def ai_config() -> AIConfig:
    return AIConfig(backend="gemini", model="fake-model", system_prompt="You are a test assistant.")


@pytest.fixture
def fake_ai() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture
def registry(echo_tool) -> ToolRegistry:
    reg = ToolRegistry()
    reg.register(echo_tool)
    reg.register(BoomTool())
    return reg


@pytest.fixture
def engine(fake_ai, registry, conversation_repo, admin_repo, ai_config) -> ConversationEngine:
    return ConversationEngine(fake_ai, registry, conversation_repo, admin_repo, ai_config)


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()
