"""Browser session acting as the desktop for capability channels."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .core.protocols import BrowserCommandLike, BrowserEvent, EventListener

LOGGER = logging.getLogger(__name__)

DEFAULT_ROOT = "root"


class BrowserSession:
    """One connected browser page and its UI roots.

    Outbound messages (script loads and commands) are queued and drained by
    the transport; inbound frames are turned into :class:`BrowserEvent`
    objects and posted to the registered listeners. An event without a target
    is desktop-scoped and reaches every listener once per root, mirroring how
    the page dispatches it; a targeted event is delivered once.
    """

    def __init__(
        self, session_id: str, *, roots: Optional[Iterable[str]] = None
    ) -> None:
        if not session_id:
            raise ValueError("session_id must not be empty")

        self._session_id = session_id
        self._roots: List[str] = list(dict.fromkeys(roots or [DEFAULT_ROOT]))
        self._scripts: Dict[str, str] = {}
        self._listeners: Dict[str, List[EventListener]] = {}
        self._outbox: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        self._closed = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def roots(self) -> Tuple[str, ...]:
        return tuple(self._roots)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_root(self, root_id: str) -> None:
        if root_id not in self._roots:
            self._roots.append(root_id)

    def remove_root(self, root_id: str) -> None:
        if root_id in self._roots:
            self._roots.remove(root_id)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    def load_script(self, script_id: str, src: str) -> None:
        if script_id in self._scripts:
            return
        self._scripts[script_id] = src
        self._send({"type": "load_script", "id": script_id, "src": src})
        LOGGER.debug("Loading helper %s into session %s", src, self._session_id)

    def unload_script(self, script_id: str) -> None:
        if self._scripts.pop(script_id, None) is None:
            return
        self._send({"type": "unload_script", "id": script_id})

    def is_script_loaded(self, script_id: str) -> bool:
        return script_id in self._scripts

    def evaluate(self, command: BrowserCommandLike) -> None:
        as_message = getattr(command, "as_message", None)
        if callable(as_message):
            message = as_message()
        else:
            message = {"type": "eval", "script": command.to_script()}
        self._send(message)

    async def next_message(self) -> Dict[str, Any]:
        """Wait for the next outbound message."""
        return await self._outbox.get()

    def pending_messages(self) -> List[Dict[str, Any]]:
        """Drain queued outbound messages without waiting."""
        messages: List[Dict[str, Any]] = []
        while not self._outbox.empty():
            messages.append(self._outbox.get_nowait())
        return messages

    def _send(self, message: Dict[str, Any]) -> None:
        if self._closed:
            LOGGER.warning(
                "Dropping %s message for closed session %s",
                message.get("type"),
                self._session_id,
            )
            return
        self._outbox.put_nowait(message)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    def add_listener(self, event_name: str, listener: EventListener) -> None:
        listeners = self._listeners.setdefault(event_name, [])
        if listener in listeners:
            raise ValueError(f"Listener already registered for {event_name}")
        listeners.append(listener)

    def remove_listener(self, event_name: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event_name)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            pass  # Not registered
        if not listeners:
            del self._listeners[event_name]

    def listener_count(self, event_name: str) -> int:
        return len(self._listeners.get(event_name, ()))

    async def post(
        self,
        event_name: str,
        data: Any,
        *,
        target: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        event = BrowserEvent(
            name=event_name, data=data, target=target, request_id=request_id
        )

        if target is not None:
            if target not in self._roots:
                LOGGER.warning(
                    "Dropping %s for unknown target %s in session %s",
                    event_name,
                    target,
                    self._session_id,
                )
                return
            await self._deliver(event)
            return

        for _root in list(self._roots):
            await self._deliver(event)

    async def handle_message(self, raw: str | bytes | Mapping[str, Any]) -> None:
        """Parse an inbound frame and post it as an event."""

        if isinstance(raw, Mapping):
            message: Any = raw
        else:
            try:
                message = json.loads(raw)
            except (json.JSONDecodeError, UnicodeDecodeError):
                LOGGER.warning("Discarding non-JSON frame from %s", self._session_id)
                return

        if not isinstance(message, Mapping):
            LOGGER.warning("Discarding non-object frame from %s", self._session_id)
            return

        event_name = message.get("event")
        if not isinstance(event_name, str) or not event_name:
            LOGGER.warning("Discarding frame without event name from %s", self._session_id)
            return

        target = message.get("target")
        request_id = message.get("requestId")
        await self.post(
            event_name,
            message.get("data"),
            target=target if isinstance(target, str) and target else None,
            request_id=request_id if isinstance(request_id, str) else None,
        )

    async def _deliver(self, event: BrowserEvent) -> None:
        listeners = list(self._listeners.get(event.name, ()))
        if not listeners:
            LOGGER.debug("No listener for %s in %s", event.name, self._session_id)
            return

        for listener in listeners:
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                LOGGER.exception("Listener for %s failed", event.name)

    def close(self) -> None:
        self._closed = True
        self._listeners.clear()
        self._scripts.clear()
