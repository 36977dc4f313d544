"""Conversation engine: history handling and the bounded tool-calling loop."""

from __future__ import annotations

import json
from typing import Any, Optional

import aiosqlite

from noga_bot.ai.client import AIClient, AIResponse, ToolCall
from noga_bot.ai.conversation import (
    VOICE_PLACEHOLDER,
    append_user_message,
    audio_content,
    build_history,
)
from noga_bot.ai.tools.registry import ToolRegistry
from noga_bot.config import AIConfig
from noga_bot.core.types import Role
from noga_bot.errors import ModelError
from noga_bot.log import get_logger
from noga_bot.storage.admin_repo import AdminRepository
from noga_bot.storage.conversation_repo import ConversationRepository
from noga_bot.storage.models import ConversationTurn

logger = get_logger(__name__)

SYSTEM_PROMPT_KEY = "system_prompt"

ANNOUNCE_SYSTEM_PROMPT = (
    "You are Noga (נוגה), a friendly home assistant. "
    "Write one or two short, warm sentences in Hebrew announcing the event to the family. "
    "Do not invent details that are not in the event data."
)


def broadcast_fallback(event_name: str, data: Any) -> str:
    """Deterministic announcement used when the model call fails."""
    payload = json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str)
    return f"📢 {event_name}: {payload}"


class ConversationEngine:
    """Drives the AI model through history, tools and persistence for one sender at a time."""

    def __init__(
        self,
        ai_client: AIClient,
        tool_registry: ToolRegistry,
        conversation_repo: ConversationRepository,
        admin_repo: AdminRepository,
        ai_config: AIConfig,
    ):
        self._ai = ai_client
        self._tools = tool_registry
        self._repo = conversation_repo
        self._admin_repo = admin_repo
        self._config = ai_config
        self._vocabulary = [w.casefold() for w in ai_config.device_vocabulary]

    @property
    def ai_client(self) -> AIClient:
        return self._ai

    def is_device_related(self, text: str) -> bool:
        """Heuristic: does the text mention device actions or status vocabulary?"""
        lowered = text.casefold()
        return any(word in lowered for word in self._vocabulary)

    async def process(self, sender: str, text: str, keep_history: Optional[bool] = None) -> str:
        """Answer a text message, running tools as the model requests.

        ``keep_history=None`` drops history for device-related input so the
        model has to query live state; ``True`` always keeps it and ``False``
        always starts clean. Raises ``ModelError`` if the provider call fails.
        """
        device_related = self.is_device_related(text)
        use_history = keep_history if keep_history is not None else not device_related

        messages = await self._history(sender) if use_history else []
        append_user_message(messages, text)
        await self._repo.save_turn(ConversationTurn(sender=sender, role=Role.USER, content=text))

        temperature = self._config.device_temperature if device_related else self._config.chat_temperature
        logger.info(
            "engine_process",
            sender=sender,
            device_related=device_related,
            history_messages=len(messages) - 1,
            temperature=temperature,
        )
        return await self._run(sender, messages, temperature)

    async def process_audio(self, sender: str, audio: bytes, mime_type: str) -> str:
        """Answer a voice message; history is always kept for audio input."""
        if not self._ai.supports_audio:
            raise ModelError(f"The {self._ai.backend} backend does not accept audio input")

        messages = await self._history(sender)
        append_user_message(messages, audio_content(audio, mime_type))
        await self._repo.save_turn(
            ConversationTurn(sender=sender, role=Role.USER, content=VOICE_PLACEHOLDER)
        )
        logger.info("engine_process_audio", sender=sender, mime_type=mime_type, size=len(audio))
        return await self._run(sender, messages, self._config.chat_temperature)

    async def announce(self, event_name: str, data: Any) -> str:
        """Phrase a short announcement of an external event. Never raises."""
        prompt = (
            f"Event: {event_name}\n"
            f"Data: {json.dumps(data, ensure_ascii=False, default=str)}"
        )
        try:
            response = await self._ai.chat(
                system=ANNOUNCE_SYSTEM_PROMPT,
                messages=[{"role": str(Role.USER), "content": prompt}],
                temperature=self._config.broadcast_temperature,
                max_tokens=self._config.max_tokens,
            )
        except Exception as e:
            logger.warning("announce_failed", event_name=event_name, error=str(e))
            return broadcast_fallback(event_name, data)

        await self._record_usage(response)
        if not response.text.strip():
            return broadcast_fallback(event_name, data)
        return response.text.strip()

    async def clear_history(self, sender: str) -> int:
        deleted = await self._repo.clear_history(sender)
        logger.info("history_cleared", sender=sender, deleted=deleted)
        return deleted

    def status(self) -> dict[str, Any]:
        return {
            "backend": self._ai.backend,
            "model": self._ai.model_name,
            "tools": len(self._tools),
            "supports_audio": self._ai.supports_audio,
        }

    async def system_prompt(self) -> str:
        """The runtime override from the config table, else the configured prompt."""
        override = await self._admin_repo.get_config(SYSTEM_PROMPT_KEY)
        return override or self._config.system_prompt

    async def _history(self, sender: str) -> list[dict[str, Any]]:
        turns = await self._repo.get_recent_turns(sender, limit=self._config.history_limit)
        return build_history(turns)

    async def _run(self, sender: str, messages: list[dict[str, Any]], temperature: float) -> str:
        system = await self.system_prompt()
        definitions = self._tools.definitions()

        response = await self._chat(system, messages, definitions, temperature)
        rounds = 0
        while response.tool_calls and rounds < self._config.max_tool_rounds:
            rounds += 1
            messages.append({"role": str(Role.ASSISTANT), "content": self._assistant_blocks(response)})

            # In request order; later calls may depend on earlier side effects.
            results = []
            for call in response.tool_calls:
                results.append(await self._execute_tool(sender, call))
            messages.append(
                {
                    "role": str(Role.USER),
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": call.id,
                            "name": call.name,
                            "content": result,
                        }
                        for call, result in zip(response.tool_calls, results)
                    ],
                }
            )
            response = await self._chat(system, messages, definitions, temperature)

        if response.tool_calls:
            logger.warning(
                "tool_loop_limit_reached",
                sender=sender,
                rounds=rounds,
                pending=[c.name for c in response.tool_calls],
            )

        final_text = response.text.strip()
        if final_text:
            await self._repo.save_turn(
                ConversationTurn(sender=sender, role=Role.ASSISTANT, content=final_text)
            )
        logger.info("engine_done", sender=sender, rounds=rounds, response_length=len(final_text))
        return final_text

    async def _chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        definitions: list[dict[str, Any]],
        temperature: float,
    ) -> AIResponse:
        response = await self._ai.chat(
            system=system,
            messages=messages,
            tools=definitions or None,
            temperature=temperature,
            max_tokens=self._config.max_tokens,
        )
        await self._record_usage(response)
        return response

    async def _execute_tool(self, sender: str, call: ToolCall) -> dict[str, Any]:
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning("unknown_tool", tool=call.name, sender=sender)
            result: dict[str, Any] = {"error": "unknown tool", "name": call.name}
        else:
            try:
                args = tool.parse_args(call.input)
                result = await tool.execute(args)
            except Exception as e:
                logger.error("tool_execution_error", tool=call.name, sender=sender, error=str(e))
                result = {"error": str(e)}

        success = "error" not in result
        logger.info("tool_executed", tool=call.name, sender=sender, success=success)
        await self._audit(
            sender,
            "tool_call",
            {"tool": call.name, "args": call.input, "success": success, "error": result.get("error")},
        )
        return result

    @staticmethod
    def _assistant_blocks(response: AIResponse) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        if response.text:
            blocks.append({"type": "text", "text": response.text})
        blocks.extend(
            {"type": "tool_use", "id": c.id, "name": c.name, "input": c.input}
            for c in response.tool_calls
        )
        return blocks

    async def _audit(self, sender: str, action: str, details: dict[str, Any]) -> None:
        try:
            await self._repo.log_action(sender, action, details)
        except aiosqlite.Error as e:
            logger.warning("audit_write_failed", action=action, error=str(e))

    async def _record_usage(self, response: AIResponse) -> None:
        cost = (
            response.input_tokens * self._config.input_cost_per_mtok
            + response.output_tokens * self._config.output_cost_per_mtok
        ) / 1_000_000
        try:
            await self._repo.record_usage(
                self._ai.model_name, response.input_tokens, response.output_tokens, cost
            )
        except aiosqlite.Error as e:
            logger.warning("usage_write_failed", error=str(e))
