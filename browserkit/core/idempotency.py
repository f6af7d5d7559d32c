"""Delivery guard that keeps each capability result to a single routing.

The browser transport posts a desktop-scoped event once per live UI root, and
reconnecting helpers may resend a completion they already reported. The guard
remembers which request ids have been routed so the router can discard every
later copy, whether or not it arrives as the same event object.

Key features:
- TTL-based expiration (default five minutes)
- Bounded memory with periodic cleanup
- Keeps the result kind and outcome for diagnostics
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DeliveredRequest:
    """Record of a request whose result has already been routed."""

    request_id: str
    result_kind: str
    success: bool
    delivered_at: datetime


class RequestDeliveryGuard:
    """
    Tracks routed request ids so duplicate completions are dropped.

    Usage:
        guard = RequestDeliveryGuard(ttl_seconds=300)

        if not guard.should_deliver(request_id):
            return  # already routed

        route(result)
        guard.mark_delivered(request_id, result_kind="text", success=True)
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        cleanup_interval: int = 100,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Args:
            ttl_seconds: How long a delivered request id is remembered.
            max_entries: Maximum entries before forced cleanup.
            cleanup_interval: Run cleanup every N operations.
            clock: Time source, injectable for tests.
        """
        self._delivered: Dict[str, DeliveredRequest] = {}
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._cleanup_interval = max(1, cleanup_interval)
        self._operation_count = 0
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def should_deliver(self, request_id: str) -> bool:
        """Return False when the request's result was already routed."""
        self._maybe_cleanup()

        entry = self._delivered.get(request_id)
        if entry is None:
            return True
        if self._is_expired(entry):
            del self._delivered[request_id]
            return True

        LOGGER.debug(
            "Duplicate completion for request %s (delivered at %s, kind=%s)",
            request_id,
            entry.delivered_at.isoformat(),
            entry.result_kind,
        )
        return False

    def mark_delivered(
        self, request_id: str, *, result_kind: str, success: bool
    ) -> None:
        self._maybe_cleanup()

        self._delivered[request_id] = DeliveredRequest(
            request_id=request_id,
            result_kind=result_kind,
            success=success,
            delivered_at=self._clock(),
        )

    def get(self, request_id: str) -> Optional[DeliveredRequest]:
        entry = self._delivered.get(request_id)
        if entry is None:
            return None
        if self._is_expired(entry):
            del self._delivered[request_id]
            return None
        return entry

    def clear(self) -> None:
        self._delivered.clear()
        self._operation_count = 0

    @property
    def entry_count(self) -> int:
        return len(self._delivered)

    def _is_expired(self, entry: DeliveredRequest) -> bool:
        return entry.delivered_at < self._clock() - self._ttl

    def _maybe_cleanup(self) -> None:
        self._operation_count += 1

        if (
            self._operation_count % self._cleanup_interval != 0
            and len(self._delivered) < self._max_entries
        ):
            return

        self._cleanup_expired()

    def _cleanup_expired(self) -> None:
        cutoff = self._clock() - self._ttl
        expired = [k for k, v in self._delivered.items() if v.delivered_at < cutoff]
        for key in expired:
            del self._delivered[key]

        if expired:
            LOGGER.debug("Forgot %d expired request deliveries", len(expired))

        if len(self._delivered) >= self._max_entries:
            oldest = sorted(self._delivered.items(), key=lambda x: x[1].delivered_at)
            remove_count = max(1, len(oldest) // 2)
            for key, _ in oldest[:remove_count]:
                del self._delivered[key]
            LOGGER.warning(
                "Forced cleanup of %d oldest request deliveries (max_entries=%d reached)",
                remove_count,
                self._max_entries,
            )
