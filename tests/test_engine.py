"""Tests for the conversation engine and its tool loop."""

from __future__ import annotations

import asyncio
from typing import Any

import aiosqlite
import pytest

from conftest import EchoArgs, EchoTool, FakeAIClient, text_response, tool_response
from noga_bot.ai.conversation import VOICE_PLACEHOLDER
from noga_bot.ai.engine import ConversationEngine, broadcast_fallback
from noga_bot.config import AIConfig
from noga_bot.core.types import Role
from noga_bot.errors import ModelError
from noga_bot.storage.models import ConversationTurn


async def _seed_history(repo, sender: str) -> None:
    await repo.save_turn(ConversationTurn(sender=sender, role=Role.USER, content="שלום"))
    await repo.save_turn(ConversationTurn(sender=sender, role=Role.ASSISTANT, content="היי! מה שלומך?"))


class SwitchTool(EchoTool):
    """Turning on is slower than turning off, so overlapping calls would finish out of order."""

    def __init__(self, log: list[str]):
        super().__init__("switch")
        self._log = log

    async def execute(self, args: EchoArgs) -> dict[str, Any]:
        self._log.append(f"start {args.value}")
        await asyncio.sleep(0.05 if args.value == "turn_on" else 0)
        self._log.append(f"end {args.value}")
        return {"success": True, "state": args.value}


class TestHistory:
    @pytest.mark.asyncio
    async def test_chat_input_gets_history(self, engine, fake_ai, conversation_repo) -> None:
        await _seed_history(conversation_repo, "u1")
        fake_ai.responses = [text_response("בסדר")]

        await engine.process("u1", "מה נשמע?")

        messages = fake_ai.calls[0]["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[-1]["content"] == "מה נשמע?"
        assert fake_ai.calls[0]["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_device_related_input_forces_empty_history(self, engine, fake_ai, conversation_repo) -> None:
        await _seed_history(conversation_repo, "u1")
        fake_ai.responses = [text_response("האור דולק")]

        await engine.process("u1", "האם דולק האור בסלון?")

        messages = fake_ai.calls[0]["messages"]
        assert messages == [{"role": "user", "content": "האם דולק האור בסלון?"}]
        assert fake_ai.calls[0]["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_keep_history_overrides_device_heuristic(self, engine, fake_ai, conversation_repo) -> None:
        await _seed_history(conversation_repo, "u1")
        fake_ai.responses = [text_response("ok")]

        await engine.process("u1", "תדליק את האור", keep_history=True)

        assert len(fake_ai.calls[0]["messages"]) == 3

    @pytest.mark.asyncio
    async def test_keep_history_false_always_starts_clean(self, engine, fake_ai, conversation_repo) -> None:
        await _seed_history(conversation_repo, "u1")
        fake_ai.responses = [text_response("ok")]

        await engine.process("u1", "ספרי לי בדיחה", keep_history=False)

        assert len(fake_ai.calls[0]["messages"]) == 1

    @pytest.mark.asyncio
    async def test_history_never_starts_with_assistant(self, engine, fake_ai, conversation_repo) -> None:
        await conversation_repo.save_turn(ConversationTurn(sender="u1", role=Role.ASSISTANT, content="orphan"))
        await conversation_repo.save_turn(ConversationTurn(sender="u1", role=Role.USER, content="a"))
        await conversation_repo.save_turn(ConversationTurn(sender="u1", role=Role.USER, content="b"))
        fake_ai.responses = [text_response("ok")]

        await engine.process("u1", "c")

        messages = fake_ai.calls[0]["messages"]
        assert messages == [{"role": "user", "content": "a\nb\nc"}]

    @pytest.mark.asyncio
    async def test_device_vocabulary_is_configurable(self, fake_ai, registry, conversation_repo, admin_repo, ai_config) -> None:
        ai_config.device_vocabulary = ["פלמינגו"]
        engine = ConversationEngine(fake_ai, registry, conversation_repo, admin_repo, ai_config)

        assert engine.is_device_related("איפה הפלמינגו?")
        assert not engine.is_device_related("תדליק את האור")


class TestPersistence:
    @pytest.mark.asyncio
    async def test_user_turn_persisted_before_model_failure(self, engine, fake_ai, conversation_repo) -> None:
        fake_ai.responses = [ModelError("upstream down")]

        with pytest.raises(ModelError):
            await engine.process("u1", "מה יש לי היום?")

        turns = await conversation_repo.get_recent_turns("u1")
        assert [(t.role, t.content) for t in turns] == [(Role.USER, "מה יש לי היום?")]

    @pytest.mark.asyncio
    async def test_final_text_persisted(self, engine, fake_ai, conversation_repo) -> None:
        fake_ai.responses = [text_response("  הכל טוב  ")]

        result = await engine.process("u1", "מה המצב?", keep_history=True)

        assert result == "הכל טוב"
        turns = await conversation_repo.get_recent_turns("u1")
        assert turns[-1].role == Role.ASSISTANT
        assert turns[-1].content == "הכל טוב"

    @pytest.mark.asyncio
    async def test_empty_final_text_not_persisted(self, engine, fake_ai, conversation_repo) -> None:
        fake_ai.responses = [text_response("")]

        result = await engine.process("u1", "hello")

        assert result == ""
        turns = await conversation_repo.get_recent_turns("u1")
        assert [t.role for t in turns] == [Role.USER]

    @pytest.mark.asyncio
    async def test_usage_recorded(self, engine, fake_ai, conversation_repo) -> None:
        fake_ai.responses = [text_response("hi")]

        await engine.process("u1", "hello")

        stats = await conversation_repo.usage_stats()
        assert stats["today"].input_tokens == 10
        assert stats["today"].output_tokens == 5


class TestToolLoop:
    @pytest.mark.asyncio
    async def test_tool_result_fed_back(self, engine, fake_ai, echo_tool) -> None:
        fake_ai.responses = [
            tool_response(("echo", {"value": "x", "unexpected": 1})),
            text_response("done"),
        ]

        result = await engine.process("u1", "echo x")

        assert result == "done"
        assert echo_tool.calls[0].value == "x"
        second = fake_ai.calls[1]["messages"]
        assert second[-2]["role"] == "assistant"
        assert second[-2]["content"][0]["type"] == "tool_use"
        assert second[-1]["content"] == [
            {
                "type": "tool_result",
                "tool_use_id": "call_0",
                "name": "echo",
                "content": {"success": True, "value": "x"},
            }
        ]

    @pytest.mark.asyncio
    async def test_tool_exception_is_fed_back_as_error(self, engine, fake_ai) -> None:
        fake_ai.responses = [tool_response(("explode", {})), text_response("סליחה, משהו השתבש")]

        result = await engine.process("u1", "do it")

        assert result == "סליחה, משהו השתבש"
        results = fake_ai.calls[1]["messages"][-1]["content"]
        assert results[0]["content"] == {"error": "boom"}

    @pytest.mark.asyncio
    async def test_unknown_tool_does_not_abort(self, engine, fake_ai) -> None:
        fake_ai.responses = [tool_response(("teleport", {"to": "mars"})), text_response("can't")]

        result = await engine.process("u1", "teleport me")

        assert result == "can't"
        error = fake_ai.calls[1]["messages"][-1]["content"][0]["content"]
        assert error["error"] == "unknown tool"

    @pytest.mark.asyncio
    async def test_invalid_arguments_become_error_result(self, engine, fake_ai, echo_tool) -> None:
        fake_ai.responses = [tool_response(("echo", {"value": ["not", "a", "string"]})), text_response("ok")]

        await engine.process("u1", "echo")

        error = fake_ai.calls[1]["messages"][-1]["content"][0]["content"]
        assert "Invalid arguments for echo" in error["error"]
        assert echo_tool.calls == []

    @pytest.mark.asyncio
    async def test_results_of_one_round_are_batched(self, engine, fake_ai) -> None:
        fake_ai.responses = [
            tool_response(("echo", {"value": "a"}), ("explode", {}), ("echo", {"value": "b"})),
            text_response("ok"),
        ]

        await engine.process("u1", "many")

        assert len(fake_ai.calls) == 2
        batch = fake_ai.calls[1]["messages"][-1]["content"]
        assert [r["tool_use_id"] for r in batch] == ["call_0", "call_1", "call_2"]
        assert batch[1]["content"] == {"error": "boom"}

    @pytest.mark.asyncio
    async def test_calls_in_one_round_run_in_request_order(self, engine, fake_ai, registry) -> None:
        log: list[str] = []
        registry.register(SwitchTool(log))
        fake_ai.responses = [
            tool_response(("switch", {"value": "turn_on"}), ("switch", {"value": "turn_off"})),
            text_response("off"),
        ]

        await engine.process("u1", "on then off")

        assert log == ["start turn_on", "end turn_on", "start turn_off", "end turn_off"]

    @pytest.mark.asyncio
    async def test_loop_terminates_at_cap(self, engine, fake_ai, ai_config) -> None:
        fake_ai.responses = [tool_response(("echo", {"value": "again"}), text="still working")]
        fake_ai.repeat_last = True

        result = await engine.process("u1", "loop forever")

        assert len(fake_ai.calls) == ai_config.max_tool_rounds + 1
        assert result == "still working"

    @pytest.mark.asyncio
    async def test_every_invocation_is_audited(self, engine, fake_ai, conversation_repo) -> None:
        fake_ai.responses = [tool_response(("echo", {"value": "a"}), ("explode", {})), text_response("ok")]

        await engine.process("u1", "audit me")

        actions = await conversation_repo.recent_actions(sender="u1")
        by_tool = {a.details["tool"]: a.details for a in actions}
        assert by_tool["echo"]["success"] is True
        assert by_tool["explode"]["success"] is False
        assert by_tool["explode"]["error"] == "boom"

    @pytest.mark.asyncio
    async def test_audit_failure_is_advisory(self, engine, fake_ai, conversation_repo, monkeypatch) -> None:
        async def broken_log_action(*args, **kwargs):
            raise aiosqlite.OperationalError("database is locked")

        monkeypatch.setattr(conversation_repo, "log_action", broken_log_action)
        fake_ai.responses = [tool_response(("echo", {"value": "a"})), text_response("ok")]

        assert await engine.process("u1", "still fine") == "ok"


class TestEntryPoints:
    @pytest.mark.asyncio
    async def test_process_audio_sends_audio_block(self, engine, fake_ai, conversation_repo) -> None:
        fake_ai.responses = [text_response("שמעתי")]

        result = await engine.process_audio("u1", b"OggS...", "audio/ogg")

        assert result == "שמעתי"
        content = fake_ai.calls[0]["messages"][-1]["content"]
        assert content[0] == {"type": "audio", "media_type": "audio/ogg", "data": b"OggS..."}
        turns = await conversation_repo.get_recent_turns("u1")
        assert turns[0].content == VOICE_PLACEHOLDER

    @pytest.mark.asyncio
    async def test_process_audio_rejected_without_audio_support(self, engine, fake_ai) -> None:
        fake_ai.audio = False

        with pytest.raises(ModelError):
            await engine.process_audio("u1", b"...", "audio/ogg")

    @pytest.mark.asyncio
    async def test_announce_is_stateless(self, engine, fake_ai, conversation_repo) -> None:
        fake_ai.responses = [text_response("📦 החבילה הגיעה!")]

        result = await engine.announce("package_delivered", {"carrier": "DHL"})

        assert result == "📦 החבילה הגיעה!"
        call = fake_ai.calls[0]
        assert len(call["messages"]) == 1
        assert call["tools"] is None
        assert call["temperature"] == 0.9
        assert await conversation_repo.get_recent_turns("system_scheduler") == []

    @pytest.mark.asyncio
    async def test_announce_falls_back_on_model_failure(self) -> None:
        ai = FakeAIClient([ModelError("quota", quota=True)])
        engine = ConversationEngine(ai, None, None, None, AIConfig())  # type: ignore[arg-type]

        result = await engine.announce("door_open", {"door": "front"})

        assert result == broadcast_fallback("door_open", {"door": "front"})
        assert result == '📢 door_open: {"door":"front"}'

    @pytest.mark.asyncio
    async def test_clear_history_is_idempotent(self, engine, conversation_repo) -> None:
        await _seed_history(conversation_repo, "u1")

        assert await engine.clear_history("u1") == 2
        assert await engine.clear_history("u1") == 0
        assert await conversation_repo.get_recent_turns("u1") == []

    @pytest.mark.asyncio
    async def test_system_prompt_override(self, engine, fake_ai, admin_repo) -> None:
        await admin_repo.set_config("system_prompt", "Custom prompt")
        fake_ai.responses = [text_response("ok")]

        await engine.process("u1", "hi")

        assert fake_ai.calls[0]["system"] == "Custom prompt"

    @pytest.mark.asyncio
    async def test_status(self, engine) -> None:
        status = engine.status()
        assert status["backend"] == "fake"
        assert status["model"] == "fake-model"
        assert status["tools"] == 2
