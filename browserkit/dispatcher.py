"""One-way capability commands sent to the browser helper scripts."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .core.models import CapabilityAction
from .core.protocols import Desktop
from .correlation import REQUEST_ID_FIELD, new_request_id

LOGGER = logging.getLogger(__name__)

# Helper-script method invoked for each action.
ACTION_METHODS: Dict[CapabilityAction, str] = {
    CapabilityAction.READ_TEXT: "readText",
    CapabilityAction.WRITE_TEXT: "writeText",
    CapabilityAction.READ_IMAGE: "readImage",
    CapabilityAction.GET_POSITION: "getCurrentPosition",
}

_JS_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def escape_js_string(text: str) -> str:
    """Escape text for embedding in a single-quoted script literal."""
    return "".join(_JS_ESCAPES.get(char, char) for char in text)


@dataclass(frozen=True, slots=True)
class BrowserCommand:
    widget: str
    action: CapabilityAction
    request_id: str
    target: Optional[str] = None
    text: Optional[str] = None

    @property
    def method(self) -> str:
        return ACTION_METHODS[self.action]

    def options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {REQUEST_ID_FIELD: self.request_id}
        if self.target is not None:
            options["target"] = self.target
        return options

    def to_script(self) -> str:
        """Render the command as the script the browser evaluates.

        Example: ``ClipboardHelper.writeText('it\\'s', {"requestId": "..."})``
        """
        args = []
        if self.action is CapabilityAction.WRITE_TEXT:
            args.append(f"'{escape_js_string(self.text or '')}'")
        args.append(json.dumps(self.options(), ensure_ascii=True))
        return f"{self.widget}.{self.method}({', '.join(args)})"

    def as_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "type": "eval",
            "script": self.to_script(),
            "action": self.action.value,
            REQUEST_ID_FIELD: self.request_id,
        }
        if self.target is not None:
            message["target"] = self.target
        return message


class CommandDispatcher:
    """Stateless translator from capability intents to browser commands."""

    def __init__(
        self,
        desktop: Desktop,
        widget: str,
        *,
        kind: Optional[str] = None,
        id_factory: Optional[Callable[[Optional[str]], str]] = None,
    ) -> None:
        self._desktop = desktop
        self._widget = widget
        self._kind = kind
        self._id_factory = id_factory or new_request_id

    def dispatch(
        self,
        action: CapabilityAction,
        *,
        text: Optional[str] = None,
        target: Optional[str] = None,
    ) -> str:
        """Send ``action`` to the browser and return its correlation token.

        Fire-and-forget: the result arrives later through the desktop's event
        listeners. There is no delivery deadline.
        """
        if action is CapabilityAction.WRITE_TEXT and text is None:
            raise ValueError("write-text requires text")

        command = BrowserCommand(
            widget=self._widget,
            action=action,
            request_id=self._id_factory(self._kind),
            target=target,
            text=text if action is CapabilityAction.WRITE_TEXT else None,
        )
        self._desktop.evaluate(command)
        LOGGER.debug(
            "Dispatched %s to %s (request=%s, target=%s)",
            action.value,
            self._desktop.session_id,
            command.request_id,
            target or "*",
        )
        return command.request_id
