"""Capability channels and their per-session lifecycle.

A channel owns the dispatcher, decoder and router for one capability in one
browser session. Channels follow a strict singleton policy: at most one
ACTIVE channel per (session, kind), enforced by the :class:`ChannelRegistry`
the application injects. Creating a second one while the first is ACTIVE is a
configuration error, and every command on a channel that is not ACTIVE raises
:class:`ChannelStateError`. A disposed channel stays disposed; create a new
one with ``init`` instead.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterable,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

from . import constants
from .core.codec import Decoder, decode_clipboard_payload, decode_geolocation_payload
from .core.idempotency import RequestDeliveryGuard
from .core.models import CapabilityAction, ResultPayload
from .core.protocols import Desktop, ResultCallback
from .dispatcher import CommandDispatcher
from .router import ResultRouter, Subscription

LOGGER = logging.getLogger(__name__)

ChannelT = TypeVar("ChannelT", bound="CapabilityChannel")


class ChannelState(str, Enum):
    UNREGISTERED = "unregistered"
    ACTIVE = "active"
    DISPOSED = "disposed"


class ChannelStateError(RuntimeError):
    """Raised when a channel is used outside of its ACTIVE state."""

    def __init__(
        self,
        message: str,
        *,
        session_id: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.kind = kind


class ChannelRegistry:
    """Per-application map from (session id, channel kind) to its channel."""

    def __init__(self) -> None:
        self._channels: Dict[Tuple[str, str], "CapabilityChannel"] = {}

    def register(self, channel: "CapabilityChannel") -> None:
        key = channel.registration_key
        existing = self._channels.get(key)
        if existing is channel:
            return
        if existing is not None and existing.state is ChannelState.ACTIVE:
            raise ChannelStateError(
                f"A {key[1]} channel is already active for session {key[0]}",
                session_id=key[0],
                kind=key[1],
            )
        self._channels[key] = channel

    def unregister(self, channel: "CapabilityChannel") -> None:
        key = channel.registration_key
        if self._channels.get(key) is channel:
            del self._channels[key]

    def get(self, session_id: str, kind: str) -> Optional["CapabilityChannel"]:
        return self._channels.get((session_id, kind))

    def channels_for(self, session_id: str) -> List["CapabilityChannel"]:
        return [
            channel
            for (owner, _), channel in self._channels.items()
            if owner == session_id
        ]

    def open(
        self, channel_type: Type[ChannelT], desktop: Desktop, **kwargs: Any
    ) -> ChannelT:
        return channel_type(desktop, registry=self, **kwargs)

    def dispose_session(self, session_id: str) -> int:
        """Dispose every channel of a session, returning how many were closed."""
        channels = self.channels_for(session_id)
        for channel in channels:
            channel.dispose()
        return len(channels)

    def __len__(self) -> int:
        return len(self._channels)


class CapabilityChannel:
    kind: ClassVar[str]
    widget: ClassVar[str]
    event_name: ClassVar[str]
    default_script: ClassVar[str]
    decoder: ClassVar[Decoder]

    def __init__(
        self,
        desktop: Desktop,
        *,
        registry: ChannelRegistry,
        script_src: Optional[str] = None,
        guard: Optional[RequestDeliveryGuard] = None,
        id_factory: Optional[Callable[[Optional[str]], str]] = None,
    ) -> None:
        self._desktop = desktop
        self._registry = registry
        self._script_src = script_src or self.default_script
        self._state = ChannelState.UNREGISTERED
        self._current_action: Optional[CapabilityAction] = None
        self._router = ResultRouter(self.decoder, guard=guard, name=self.kind)
        self._dispatcher = CommandDispatcher(
            desktop, self.widget, kind=self.kind, id_factory=id_factory
        )
        self._activate()

    @classmethod
    def init(
        cls: Type[ChannelT],
        desktop: Desktop,
        *,
        registry: ChannelRegistry,
        **kwargs: Any,
    ) -> ChannelT:
        """Create and activate a channel for ``desktop``."""
        return cls(desktop, registry=registry, **kwargs)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is ChannelState.ACTIVE

    @property
    def session_id(self) -> str:
        return self._desktop.session_id

    @property
    def registration_key(self) -> Tuple[str, str]:
        return (self._desktop.session_id, self.kind)

    @property
    def script_id(self) -> str:
        return f"{constants.APP_NAME}.{self.kind}helper"

    @property
    def current_action(self) -> Optional[CapabilityAction]:
        """The action most recently dispatched on this channel."""
        return self._current_action

    @property
    def router(self) -> ResultRouter:
        return self._router

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _activate(self) -> None:
        self._registry.register(self)
        try:
            self._desktop.add_listener(self.event_name, self._router.handle_event)
            self._desktop.load_script(self.script_id, self._script_src)
        except Exception:
            self._desktop.remove_listener(self.event_name, self._router.handle_event)
            self._registry.unregister(self)
            raise

        self._state = ChannelState.ACTIVE
        LOGGER.info(
            "%s channel active for session %s", self.kind, self._desktop.session_id
        )

    def dispose(self) -> None:
        """Detach from the session. Calling it again is a no-op."""

        if self._state is ChannelState.DISPOSED:
            return

        if self._state is ChannelState.ACTIVE:
            self._desktop.remove_listener(self.event_name, self._router.handle_event)
            self._desktop.unload_script(self.script_id)
            self._registry.unregister(self)

        self._router.close()
        self._state = ChannelState.DISPOSED
        LOGGER.info(
            "%s channel disposed for session %s", self.kind, self._desktop.session_id
        )

    def _ensure_active(self) -> None:
        if self._state is not ChannelState.ACTIVE:
            raise ChannelStateError(
                f"{self.kind} channel for session {self._desktop.session_id} "
                f"is {self._state.value}",
                session_id=self._desktop.session_id,
                kind=self.kind,
            )

    # ------------------------------------------------------------------
    # Requests and subscribers
    # ------------------------------------------------------------------
    def subscribe(
        self,
        default: Optional[ResultCallback] = None,
        *,
        callbacks: Optional[Dict[str, ResultCallback]] = None,
        actions: Optional[Iterable[CapabilityAction]] = None,
        target: Optional[str] = None,
    ) -> Subscription:
        self._ensure_active()
        return self._router.subscribe(
            default, callbacks=callbacks, actions=actions, target=target
        )

    def unsubscribe(self, subscription: Subscription) -> None:
        self._router.unsubscribe(subscription)

    def _request(
        self,
        action: CapabilityAction,
        *,
        text: Optional[str] = None,
        target: Optional[str] = None,
    ) -> "asyncio.Future[ResultPayload]":
        self._ensure_active()

        outstanding = self._router.pending_requests(action)
        if outstanding:
            LOGGER.warning(
                "%s requested while %d earlier request(s) are outstanding in session %s",
                action.value,
                len(outstanding),
                self._desktop.session_id,
            )

        request_id = self._dispatcher.dispatch(action, text=text, target=target)
        self._current_action = action
        return self._router.expect(request_id, action, target)


class ClipboardChannel(CapabilityChannel):
    """Clipboard text and image access through the browser Clipboard API.

    Requests must originate from a user gesture in the page; browsers reject
    clipboard access otherwise and the failure comes back as an error result.
    """

    kind = "clipboard"
    widget = "ClipboardHelper"
    event_name = "onClipboardAction"
    default_script = constants.DEFAULT_CLIPBOARD_SCRIPT
    decoder = staticmethod(decode_clipboard_payload)

    def read_text(
        self, *, target: Optional[str] = None
    ) -> "asyncio.Future[ResultPayload]":
        return self._request(CapabilityAction.READ_TEXT, target=target)

    def write_text(
        self, text: str, *, target: Optional[str] = None
    ) -> "asyncio.Future[ResultPayload]":
        return self._request(CapabilityAction.WRITE_TEXT, text=text, target=target)

    def read_image(
        self, *, target: Optional[str] = None
    ) -> "asyncio.Future[ResultPayload]":
        return self._request(CapabilityAction.READ_IMAGE, target=target)

    def on_result(
        self,
        text_callback: ResultCallback,
        image_callback: Optional[ResultCallback] = None,
        *,
        actions: Optional[Iterable[CapabilityAction]] = None,
        target: Optional[str] = None,
    ) -> Subscription:
        """Subscribe to clipboard results.

        Image results go to ``image_callback`` when given; everything else,
        including image results without an image callback, goes to
        ``text_callback``.
        """
        callbacks = {"image": image_callback} if image_callback else None
        return self.subscribe(
            text_callback, callbacks=callbacks, actions=actions, target=target
        )


class GeolocationChannel(CapabilityChannel):
    """Current-position requests through the browser Geolocation API."""

    kind = "geolocation"
    widget = "GeolocationHelper"
    event_name = "onGetLocation"
    default_script = constants.DEFAULT_GEOLOCATION_SCRIPT
    decoder = staticmethod(decode_geolocation_payload)

    def get_current_position(
        self, *, target: Optional[str] = None
    ) -> "asyncio.Future[ResultPayload]":
        return self._request(CapabilityAction.GET_POSITION, target=target)

    def on_position(
        self,
        position_callback: ResultCallback,
        error_callback: ResultCallback,
        *,
        target: Optional[str] = None,
    ) -> Subscription:
        return self.subscribe(
            callbacks={
                "position": position_callback,
                "position_error": error_callback,
                "error": error_callback,
            },
            target=target,
        )


CHANNEL_TYPES: Dict[str, Type[CapabilityChannel]] = {
    ClipboardChannel.kind: ClipboardChannel,
    GeolocationChannel.kind: GeolocationChannel,
}
