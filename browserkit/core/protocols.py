"""Protocol definitions for browser sessions and result callbacks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from .models import ResultPayload


@dataclass(eq=False, slots=True)
class BrowserEvent:
    """An inbound event posted by the browser helper.

    Events compare by identity: the transport hands the same object to every
    UI root it fans a desktop-scoped event out to.
    """

    name: str
    data: Any
    target: Optional[str] = None
    request_id: Optional[str] = None


EventListener = Callable[[BrowserEvent], Awaitable[None] | None]
ResultCallback = Callable[[ResultPayload], Awaitable[None] | None]


class BrowserCommandLike(Protocol):
    action: Any
    request_id: str
    target: Optional[str]

    def to_script(self) -> str: ...


class Desktop(Protocol):
    """Minimal contract of a browser session hosting capability channels."""

    @property
    def session_id(self) -> str:
        """Stable identifier of the browser session."""
        ...

    def load_script(self, script_id: str, src: str) -> None:
        """Ensure the helper script is loaded in the browser, once per session."""
        ...

    def unload_script(self, script_id: str) -> None:
        """Detach a previously loaded helper script."""
        ...

    def evaluate(self, command: BrowserCommandLike) -> None:
        """Send a one-way command to the browser. Never waits for a reply."""
        ...

    def add_listener(self, event_name: str, listener: EventListener) -> None:
        """Route inbound events with the given name to the listener."""
        ...

    def remove_listener(self, event_name: str, listener: EventListener) -> None:
        """Stop routing events to the listener."""
        ...
