"""Main application entry-point for browserkit."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from . import constants
from .channel import ChannelRegistry
from .config import BrowserKitConfig, load_config
from .core.codec import encode_result
from .core.models import ImageResult, ResultPayload
from .logging import configure_logging
from .server import BridgeServer

LOGGER = logging.getLogger(__name__)


class BrowserKitApp:
    """Runs the bridge server until shutdown."""

    def __init__(
        self,
        config: Optional[BrowserKitConfig] = None,
        *,
        registry: Optional[ChannelRegistry] = None,
    ) -> None:
        self._config = config or load_config()
        self._registry = registry or ChannelRegistry()
        self._server: Optional[BridgeServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def server(self) -> Optional[BridgeServer]:
        return self._server

    async def run(self) -> None:
        self._shutdown_event = asyncio.Event()

        LOGGER.info("%s starting with config: %s", constants.APP_NAME, self._config.path)
        server = BridgeServer(
            self._config, registry=self._registry, on_result=self._log_result
        )
        await server.start()
        self._server = server

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("%s received shutdown signal", constants.APP_NAME)
            raise
        finally:
            await server.stop()
            self._server = None

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[BrowserKitConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("%s received shutdown signal", constants.APP_NAME)

    def _log_result(self, result: ResultPayload) -> None:
        if not result.is_success:
            LOGGER.info(
                "%s result failed (request=%s): %s",
                result.kind,
                result.request_id or "-",
                result.error.message if result.error else "unknown error",
            )
            return

        if isinstance(result, ImageResult):
            LOGGER.info(
                "Clipboard image %s %dx%d (%d bytes, request=%s)",
                result.mime_type,
                result.width,
                result.height,
                result.size_bytes,
                result.request_id or "-",
            )
            return

        LOGGER.info("%s result delivered: %s", result.kind, encode_result(result))
