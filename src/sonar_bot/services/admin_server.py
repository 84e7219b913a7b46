"""Runs the admin FastAPI app under uvicorn inside the bot's event loop."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI

from sonar_bot.config import ServerConfig
from sonar_bot.log import get_logger
from sonar_bot.services.base import Service

logger = get_logger(__name__)


class AdminServerService(Service):
    """uvicorn server as a background task."""

    def __init__(self, app: FastAPI, config: ServerConfig):
        self._config = config
        self._server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=config.host,
                port=config.port,
                log_config=None,
                access_log=False,
            )
        )
        self._task: Optional[asyncio.Task[Any]] = None

    @property
    def service_name(self) -> str:
        return "admin_server"

    async def start(self) -> None:
        self._task = asyncio.create_task(self._server.serve(), name="admin-server")
        logger.info("admin_server_started", host=self._config.host, port=self._config.port)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=10)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
        logger.info("admin_server_stopped")

    async def health_check(self) -> bool:
        return self._task is not None and not self._task.done()
