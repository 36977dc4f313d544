"""Abstract tool interface for model tool calls."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from noga_bot.errors import ToolError


class ToolArgs(BaseModel):
    """Base for per-tool argument models. Unknown fields from the model are dropped."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class NoArgs(ToolArgs):
    pass


class Tool(ABC):
    """Base class for all model-callable tools."""

    args_model: ClassVar[type[ToolArgs]] = NoArgs

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the model."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def parse_args(self, raw: dict[str, Any] | None) -> ToolArgs:
        """Validate model-generated arguments; raises ``ToolError`` on bad input."""
        try:
            return self.args_model.model_validate(raw or {})
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolError(self.name, f"Invalid arguments for {self.name}: {problems}") from e

    @abstractmethod
    async def execute(self, args: Any) -> dict[str, Any]:
        """Run the tool and return a structured result for the model."""
        ...

    def to_definition(self) -> dict[str, Any]:
        """Serialize to the provider-neutral tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
