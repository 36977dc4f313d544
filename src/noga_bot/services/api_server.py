"""Runs the FastAPI app with uvicorn inside the bot's event loop."""

from __future__ import annotations

import asyncio
from typing import Any

import uvicorn
from fastapi import FastAPI

from noga_bot.config import ApiConfig
from noga_bot.log import get_logger
from noga_bot.services.base import Service

logger = get_logger(__name__)


class ApiServerService(Service):
    def __init__(self, config: ApiConfig, app: FastAPI):
        self._config = config
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=config.host, port=config.port, log_level="warning")
        )
        # Signals are handled by the application, not uvicorn.
        self._server.install_signal_handlers = lambda: None  # type: ignore[method-assign]
        self._task: asyncio.Task[Any] | None = None

    @property
    def service_name(self) -> str:
        return "api"

    async def start(self) -> None:
        self._task = asyncio.create_task(self._server.serve(), name="api-server")
        logger.info("api_server_started", host=self._config.host, port=self._config.port)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
        logger.info("api_server_stopped")

    async def health_check(self) -> bool:
        return self._task is not None and not self._task.done()
