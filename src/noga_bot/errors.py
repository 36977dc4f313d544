"""Error taxonomy shared by the engine, router, storage and HTTP layers."""

from __future__ import annotations

import re

_QUOTA_PATTERN = re.compile(r"\b429\b|quota|rate.?limit|resource.?exhausted", re.IGNORECASE)


class NogaError(Exception):
    """Base class for all application errors."""


class ModelError(NogaError):
    """The AI provider call itself failed.

    ``quota`` is set when the provider signalled rate limiting or an exhausted
    quota, so the router can pick the matching user-facing message.
    """

    def __init__(self, message: str, *, quota: bool = False):
        super().__init__(message)
        self.quota = quota


class ToolError(NogaError):
    """A tool handler failed or was called with invalid arguments."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class ValidationError(NogaError):
    """Administrative input was rejected (bad cron, empty prompt, duplicate keyword...)."""


class EntityNotFound(NogaError):
    """A natural-language device reference could not be resolved."""

    def __init__(self, reference: str):
        super().__init__(
            f'No device matches "{reference}". '
            "Try another name or call list_devices to see all devices."
        )
        self.reference = reference


def is_quota_error(exc: BaseException) -> bool:
    """Return True if *exc* looks like a provider quota / rate-limit failure."""
    if isinstance(exc, ModelError) and exc.quota:
        return True
    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if status == 429:
        return True
    return bool(_QUOTA_PATTERN.search(str(exc)))
