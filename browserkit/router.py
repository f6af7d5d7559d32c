"""Routing of decoded capability results to their subscribers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional

from .core.codec import Decoder
from .core.idempotency import RequestDeliveryGuard
from .core.models import CapabilityAction, ResultPayload
from .core.protocols import BrowserEvent, ResultCallback
from .correlation import extract_request_id

LOGGER = logging.getLogger(__name__)


@dataclass(eq=False, slots=True)
class Subscription:
    """Callbacks interested in the results of one channel.

    ``callbacks`` is keyed by result kind ("text", "image", "position",
    "position_error", "error"); ``default`` handles any kind without its own
    entry. A subscription bound to a ``target`` still receives untargeted
    results, but never results addressed to another target.
    """

    default: Optional[ResultCallback] = None
    callbacks: Dict[str, ResultCallback] = field(default_factory=dict)
    actions: Optional[FrozenSet[CapabilityAction]] = None
    target: Optional[str] = None

    def accepts(self, result: ResultPayload, event_target: Optional[str]) -> bool:
        if event_target is not None and self.target != event_target:
            return False
        action = getattr(result, "action", None)
        if self.actions and action is not None and action not in self.actions:
            return False
        return True

    def callback_for(self, result: ResultPayload) -> Optional[ResultCallback]:
        return self.callbacks.get(result.kind) or self.default


@dataclass(slots=True)
class _PendingRequest:
    request_id: str
    action: CapabilityAction
    target: Optional[str]
    future: "asyncio.Future[ResultPayload]"
    dispatched_at: datetime


class ResultRouter:
    """Delivers each decoded result exactly once.

    The transport may hand the same completion to the router several times:
    once per UI root for desktop-scoped events, or again after a helper
    reconnects. Repeats are dropped by event identity and, when the browser
    echoes the correlation token, by request id.
    """

    def __init__(
        self,
        decode: Decoder,
        *,
        guard: Optional[RequestDeliveryGuard] = None,
        name: str = "capability",
    ) -> None:
        self._decode = decode
        self._guard = guard or RequestDeliveryGuard()
        self._name = name
        self._subscriptions: List[Subscription] = []
        self._pending: Dict[str, _PendingRequest] = {}
        self._last_event: Optional[BrowserEvent] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------
    def subscribe(
        self,
        default: Optional[ResultCallback] = None,
        *,
        callbacks: Optional[Dict[str, ResultCallback]] = None,
        actions: Optional[Iterable[CapabilityAction]] = None,
        target: Optional[str] = None,
    ) -> Subscription:
        if default is None and not callbacks:
            raise ValueError("Subscription needs at least one callback")

        subscription = Subscription(
            default=default,
            callbacks={k: v for k, v in (callbacks or {}).items() if v is not None},
            actions=frozenset(actions) if actions else None,
            target=target,
        )
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass  # Already removed

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    # ------------------------------------------------------------------
    # Pending requests
    # ------------------------------------------------------------------
    def expect(
        self,
        request_id: str,
        action: CapabilityAction,
        target: Optional[str] = None,
    ) -> "asyncio.Future[ResultPayload]":
        """Return a future resolved with the result of ``request_id``.

        Cancelling the future forgets the request; a late result then only
        reaches the subscribers.
        """
        if self._closed:
            raise RuntimeError(f"{self._name} router is closed")

        future: asyncio.Future[ResultPayload] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _PendingRequest(
            request_id=request_id,
            action=action,
            target=target,
            future=future,
            dispatched_at=datetime.now(timezone.utc),
        )
        future.add_done_callback(lambda _: self._pending.pop(request_id, None))
        return future

    def pending_requests(
        self, action: Optional[CapabilityAction] = None
    ) -> List[str]:
        return [
            pending.request_id
            for pending in self._pending.values()
            if action is None or pending.action is action
        ]

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    async def handle_event(self, event: BrowserEvent) -> None:
        """Desktop listener: decode ``event`` and deliver it once."""

        if self._closed:
            return

        if event is self._last_event:
            LOGGER.debug("Ignoring repeated delivery of %s event", event.name)
            return
        self._last_event = event

        request_id = extract_request_id(event.data, fallback=event.request_id)
        if request_id is not None and not self._guard.should_deliver(request_id):
            return

        result = self._decode(event.data)
        if request_id is not None:
            result.request_id = request_id
            self._guard.mark_delivered(
                request_id, result_kind=result.kind, success=result.is_success
            )

        LOGGER.debug(
            "Routing %s result (request=%s, success=%s, target=%s)",
            result.kind,
            request_id or "-",
            result.is_success,
            event.target or "*",
        )

        pending = self._resolve_pending(result, request_id, event.target)

        # A result echoed without its target goes where the request was sent.
        target = event.target
        if target is None and pending is not None:
            target = pending.target
        await self._notify(result, target)

    def close(self) -> None:
        """Cancel outstanding requests and drop every subscriber."""

        self._closed = True
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.cancel()
        self._pending.clear()
        self._subscriptions.clear()
        self._last_event = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _resolve_pending(
        self,
        result: ResultPayload,
        request_id: Optional[str],
        target: Optional[str],
    ) -> Optional[_PendingRequest]:
        pending: Optional[_PendingRequest] = None
        if request_id is not None:
            pending = self._pending.pop(request_id, None)
            if pending is None:
                LOGGER.debug("No pending request for %s", request_id)
        else:
            # Without a token, results arrive in dispatch order per target.
            action = getattr(result, "action", None)
            for candidate in self._pending.values():
                if action is not None and candidate.action is not action:
                    continue
                if target is not None and candidate.target not in (None, target):
                    continue
                pending = self._pending.pop(candidate.request_id)
                break

        if pending is None:
            return None

        if not pending.future.done():
            pending.future.set_result(result)
        elapsed = datetime.now(timezone.utc) - pending.dispatched_at
        LOGGER.debug(
            "Resolved %s request %s after %.3fs",
            pending.action.value,
            pending.request_id,
            elapsed.total_seconds(),
        )
        return pending

    async def _notify(self, result: ResultPayload, target: Optional[str]) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.accepts(result, target):
                continue
            callback = subscription.callback_for(result)
            if callback is None:
                continue
            try:
                outcome = callback(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                LOGGER.exception("%s result callback failed", self._name)
