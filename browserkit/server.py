"""aiohttp bridge between server-side callers and connected browser sessions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Type

from aiohttp import WSCloseCode, WSMsgType, web

from .channel import (
    CHANNEL_TYPES,
    CapabilityChannel,
    ChannelRegistry,
    ChannelStateError,
    ClipboardChannel,
    GeolocationChannel,
)
from .config import BrowserKitConfig
from .core.codec import encode_result
from .core.idempotency import RequestDeliveryGuard
from .core.models import ResultPayload
from .core.protocols import ResultCallback
from .session import BrowserSession

LOGGER = logging.getLogger(__name__)

RequestStarter = Callable[
    [Any, Optional[str], Dict[str, Any]], "asyncio.Future[ResultPayload]"
]


class RequestError(ValueError):
    """Raised when an HTTP request body cannot be used."""


def _parse_roots(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    roots = [item.strip() for item in value.split(",") if item.strip()]
    return roots or None


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def _read_body(request: web.Request) -> Dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError as exc:
        raise RequestError(f"Request body is not valid JSON: {exc}") from exc
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise RequestError("Request body must be a JSON object")
    return body


def _start_read_text(
    channel: ClipboardChannel, target: Optional[str], body: Dict[str, Any]
) -> "asyncio.Future[ResultPayload]":
    return channel.read_text(target=target)


def _start_write_text(
    channel: ClipboardChannel, target: Optional[str], body: Dict[str, Any]
) -> "asyncio.Future[ResultPayload]":
    text = body.get("text")
    if not isinstance(text, str):
        raise RequestError("write-text requires a string 'text' field")
    return channel.write_text(text, target=target)


def _start_read_image(
    channel: ClipboardChannel, target: Optional[str], body: Dict[str, Any]
) -> "asyncio.Future[ResultPayload]":
    return channel.read_image(target=target)


def _start_get_position(
    channel: GeolocationChannel, target: Optional[str], body: Dict[str, Any]
) -> "asyncio.Future[ResultPayload]":
    return channel.get_current_position(target=target)


class BridgeServer:
    """HTTP and websocket front end for browser capability channels.

    Each browser page connects to ``/ws/{session_id}``; the server opens the
    enabled channels for that session and streams their commands down the
    socket. Callers use the HTTP API to issue a request and wait, bounded by
    ``[requests] timeout_seconds``, for its result.
    """

    def __init__(
        self,
        config: BrowserKitConfig,
        *,
        registry: Optional[ChannelRegistry] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> None:
        self._config = config
        self._registry = registry or ChannelRegistry()
        self._on_result = on_result
        self._sessions: Dict[str, BrowserSession] = {}
        self._sockets: Dict[str, web.WebSocketResponse] = {}
        self._closing: Set["asyncio.Task[bool]"] = set()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @property
    def registry(self) -> ChannelRegistry:
        return self._registry

    @property
    def sessions(self) -> Dict[str, BrowserSession]:
        return dict(self._sessions)

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_get("/ws/{session_id}", self._handle_websocket)
        app.router.add_post(
            "/sessions/{session_id}/clipboard/read-text",
            self._route(ClipboardChannel, _start_read_text),
        )
        app.router.add_post(
            "/sessions/{session_id}/clipboard/write-text",
            self._route(ClipboardChannel, _start_write_text),
        )
        app.router.add_post(
            "/sessions/{session_id}/clipboard/read-image",
            self._route(ClipboardChannel, _start_read_image),
        )
        app.router.add_post(
            "/sessions/{session_id}/geolocation/position",
            self._route(GeolocationChannel, _start_get_position),
        )
        return app

    async def start(self) -> None:
        host = self._config.server.host
        port = self._config.server.port

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        LOGGER.info("Bridge listening on http://%s:%s", host, port)

    async def stop(self) -> None:
        for session_id in list(self._sessions):
            self.close_session(session_id)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def open_session(
        self, session_id: str, roots: Optional[List[str]] = None
    ) -> BrowserSession:
        """Create a session and activate its enabled channels.

        A reconnect under an existing id replaces the previous session.
        """
        if session_id in self._sessions:
            LOGGER.info("Session %s reconnected; replacing previous socket", session_id)
            self.close_session(session_id)

        session = BrowserSession(session_id, roots=roots)
        self._sessions[session_id] = session

        dedup = self._config.dedup
        for kind in self._config.channels.enabled:
            channel_type = CHANNEL_TYPES.get(kind)
            if channel_type is None:
                LOGGER.warning("Ignoring unknown channel kind %r", kind)
                continue

            channel = self._registry.open(
                channel_type,
                session,
                script_src=self._config.script_for(kind),
                guard=RequestDeliveryGuard(
                    ttl_seconds=dedup.ttl_seconds,
                    max_entries=dedup.max_entries,
                    cleanup_interval=dedup.cleanup_interval,
                ),
            )
            if self._on_result is not None:
                channel.subscribe(self._on_result)

        LOGGER.info(
            "Session %s opened with roots %s", session_id, ", ".join(session.roots)
        )
        return session

    def get_session(self, session_id: str) -> Optional[BrowserSession]:
        return self._sessions.get(session_id)

    def close_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        disposed = self._registry.dispose_session(session_id)
        session.close()
        LOGGER.info("Session %s closed (%d channel(s) disposed)", session_id, disposed)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "sessions": len(self._sessions),
                "channels": len(self._registry),
            }
        )

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        session_id = request.match_info["session_id"]
        heartbeat = self._config.server.heartbeat_seconds or None

        ws = web.WebSocketResponse(heartbeat=heartbeat)
        self._retire_socket(session_id)

        # Must be addressable before the handshake completes.
        session = self.open_session(
            session_id, roots=_parse_roots(request.query.get("roots"))
        )
        writer: Optional[asyncio.Task[None]] = None

        try:
            await ws.prepare(request)
            self._sockets[session_id] = ws
            writer = asyncio.create_task(self._pump(session, ws))

            async for message in ws:
                if message.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await session.handle_message(message.data)
                elif message.type == WSMsgType.ERROR:
                    LOGGER.warning(
                        "Websocket for session %s failed: %s",
                        session_id,
                        ws.exception(),
                    )
        finally:
            if writer is not None:
                writer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await writer
            if self._sessions.get(session_id) is session:
                self.close_session(session_id)
            if self._sockets.get(session_id) is ws:
                del self._sockets[session_id]

        return ws

    def _retire_socket(self, session_id: str) -> None:
        previous = self._sockets.pop(session_id, None)
        if previous is None or previous.closed:
            return
        # The close handshake waits on the old peer.
        task = asyncio.create_task(
            previous.close(code=WSCloseCode.GOING_AWAY, message=b"replaced")
        )
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _pump(self, session: BrowserSession, ws: web.WebSocketResponse) -> None:
        while not ws.closed:
            message = await session.next_message()
            try:
                await ws.send_json(message)
            except ConnectionResetError:
                LOGGER.debug(
                    "Socket for session %s closed while sending", session.session_id
                )
                return

    def _route(
        self, channel_type: Type[CapabilityChannel], start: RequestStarter
    ) -> Callable[[web.Request], Awaitable[web.Response]]:
        async def handler(request: web.Request) -> web.Response:
            return await self._issue(request, channel_type, start)

        return handler

    async def _issue(
        self,
        request: web.Request,
        channel_type: Type[CapabilityChannel],
        start: RequestStarter,
    ) -> web.Response:
        kind = channel_type.kind
        session_id = request.match_info["session_id"]
        if session_id not in self._sessions:
            return _error(404, f"Unknown session {session_id}")

        try:
            body = await _read_body(request)
        except RequestError as exc:
            return _error(400, str(exc))

        target = body.get("target")
        if target is not None and not isinstance(target, str):
            return _error(400, "'target' must be a string")

        channel = self._registry.get(session_id, kind)
        if channel is None:
            return _error(409, f"{kind} channel is not active for session {session_id}")
        if not isinstance(channel, channel_type):
            LOGGER.warning(
                "Session %s has a %s registered as its %s channel",
                session_id,
                type(channel).__name__,
                kind,
            )
            return _error(
                409, f"{kind} channel for session {session_id} cannot serve this request"
            )

        try:
            future = start(channel, target, body)
        except ChannelStateError as exc:
            return _error(409, str(exc))
        except RequestError as exc:
            return _error(400, str(exc))

        timeout = self._config.requests.timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                result = await future
        except TimeoutError:
            LOGGER.warning(
                "%s request in session %s timed out after %.1fs",
                kind,
                session_id,
                timeout,
            )
            return _error(504, f"No {kind} result within {timeout:g}s")
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return _error(409, f"{kind} channel for session {session_id} was disposed")

        return web.json_response(encode_result(result))
