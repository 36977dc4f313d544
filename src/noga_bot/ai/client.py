"""AI client abstraction with Gemini and Anthropic API backends.

Both backends speak the same provider-neutral message format so the engine
never sees SDK types:

- ``{"role": "user" | "assistant", "content": str | list[block]}``
- blocks: ``{"type": "text", "text"}``, ``{"type": "audio", "media_type", "data": bytes}``,
  ``{"type": "tool_use", "id", "name", "input"}``,
  ``{"type": "tool_result", "tool_use_id", "name", "content": dict}``

Tool definitions use ``{"name", "description", "input_schema"}``.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from noga_bot.config import AnthropicConfig, GeminiConfig
from noga_bot.errors import ModelError, is_quota_error
from noga_bot.log import get_logger

logger = get_logger(__name__)

# Gemini often omits call ids; locally generated ones are never sent back.
_LOCAL_CALL_PREFIX = "local_call_"


def _gemini_call_id(call_id: str) -> str | None:
    return None if call_id.startswith(_LOCAL_CALL_PREFIX) else call_id


@dataclass
class ToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class AIResponse:
    """Unified response from any AI backend."""

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    raw: Any = None  # Backend-specific raw response


class AIClient(ABC):
    """Abstract base class for AI backends."""

    @abstractmethod
    async def chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AIResponse:
        """Send a conversation to the model and return its next response.

        Raises ``ModelError`` when the provider call fails.
        """
        ...

    @property
    @abstractmethod
    def backend(self) -> str:
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        ...

    @property
    def supports_audio(self) -> bool:
        return False


class AnthropicClient(AIClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig, model: str):
        import anthropic

        self._anthropic = anthropic
        self._model = model
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @property
    def backend(self) -> str:
        return "anthropic"

    @property
    def model_name(self) -> str:
        return self._model

    async def chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AIResponse:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [self._to_api_message(m) for m in messages],
            "temperature": temperature,
        }
        if tools:
            kwargs["tools"] = tools

        logger.debug("api_request", backend="anthropic", model=self._model, message_count=len(messages))
        try:
            response = await self._client.messages.create(**kwargs)
        except self._anthropic.RateLimitError as e:
            raise ModelError(str(e), quota=True) from e
        except self._anthropic.APIError as e:
            raise ModelError(str(e), quota=is_quota_error(e)) from e

        logger.debug(
            "api_response",
            backend="anthropic",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        text = "\n".join(b.text for b in response.content if b.type == "text")
        tool_calls = [
            ToolCall(id=b.id, name=b.name, input=dict(b.input or {}))
            for b in response.content
            if b.type == "tool_use"
        ]
        return AIResponse(
            text=text,
            tool_calls=tool_calls,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            raw=response,
        )

    @staticmethod
    def _to_api_message(message: dict[str, Any]) -> dict[str, Any]:
        content = message["content"]
        if isinstance(content, str):
            return {"role": message["role"], "content": content}

        blocks: list[dict[str, Any]] = []
        for block in content:
            match block["type"]:
                case "text":
                    blocks.append({"type": "text", "text": block["text"]})
                case "tool_use":
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": block["id"],
                            "name": block["name"],
                            "input": block["input"],
                        }
                    )
                case "tool_result":
                    result = block["content"]
                    blocks.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": block["tool_use_id"],
                            "content": json.dumps(result, ensure_ascii=False, default=str),
                            "is_error": isinstance(result, dict) and "error" in result,
                        }
                    )
                case "audio":
                    raise ModelError("Audio input is not supported by the anthropic backend")
        return {"role": message["role"], "content": blocks}


class GeminiClient(AIClient):
    """Google Gemini backend using the google-genai SDK with manual function calling."""

    def __init__(self, config: GeminiConfig, model: str):
        from google import genai
        from google.genai import errors, types

        self._types = types
        self._errors = errors
        self._model = model
        self._client = genai.Client(
            api_key=config.api_key,
            http_options=types.HttpOptions(timeout=config.timeout * 1000),
        )

    @property
    def backend(self) -> str:
        return "gemini"

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def supports_audio(self) -> bool:
        return True

    async def chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AIResponse:
        types = self._types
        config = types.GenerateContentConfig(
            system_instruction=system or None,
            temperature=temperature,
            max_output_tokens=max_tokens,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )
        if tools:
            config.tools = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=t["name"],
                            description=t["description"],
                            parameters_json_schema=t["input_schema"],
                        )
                        for t in tools
                    ]
                )
            ]

        contents = [self._to_content(m) for m in messages]
        logger.debug("api_request", backend="gemini", model=self._model, message_count=len(messages))
        try:
            response = await self._client.aio.models.generate_content(
                model=self._model, contents=contents, config=config
            )
        except self._errors.APIError as e:
            raise ModelError(str(e), quota=e.code == 429 or is_quota_error(e)) from e

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        candidates = response.candidates or []
        parts = (candidates[0].content.parts or []) if candidates and candidates[0].content else []
        for i, part in enumerate(parts):
            if part.function_call is not None:
                fc = part.function_call
                tool_calls.append(
                    ToolCall(id=fc.id or f"{_LOCAL_CALL_PREFIX}{i}", name=fc.name or "", input=dict(fc.args or {}))
                )
            elif part.text and not part.thought:
                text_parts.append(part.text)

        usage = response.usage_metadata
        input_tokens = (usage.prompt_token_count or 0) if usage else 0
        output_tokens = (usage.candidates_token_count or 0) if usage else 0
        logger.debug(
            "api_response",
            backend="gemini",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            function_calls=len(tool_calls),
        )
        return AIResponse(
            text="".join(text_parts).strip(),
            tool_calls=tool_calls,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            raw=response,
        )

    def _to_content(self, message: dict[str, Any]) -> Any:
        types = self._types
        role = "model" if message["role"] == "assistant" else "user"
        content = message["content"]
        if isinstance(content, str):
            return types.Content(role=role, parts=[types.Part.from_text(text=content)])

        parts = []
        for block in content:
            match block["type"]:
                case "text":
                    parts.append(types.Part.from_text(text=block["text"]))
                case "audio":
                    parts.append(types.Part.from_bytes(data=block["data"], mime_type=block["media_type"]))
                case "tool_use":
                    parts.append(
                        types.Part(
                            function_call=types.FunctionCall(
                                id=_gemini_call_id(block["id"]),
                                name=block["name"],
                                args=block["input"],
                            )
                        )
                    )
                case "tool_result":
                    parts.append(
                        types.Part(
                            function_response=types.FunctionResponse(
                                id=_gemini_call_id(block["tool_use_id"]),
                                name=block["name"],
                                response=block["content"],
                            )
                        )
                    )
        return types.Content(role=role, parts=parts)
