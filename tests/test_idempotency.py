"""Tests for RequestDeliveryGuard."""

from datetime import datetime, timedelta, timezone

from browserkit.core.idempotency import DeliveredRequest, RequestDeliveryGuard


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class TestRequestDeliveryGuard:
    """Unit tests for the delivery guard."""

    def test_should_deliver_new_request(self):
        """Unknown request ids should be delivered."""
        guard = RequestDeliveryGuard()

        assert guard.should_deliver("clipboard-1") is True

    def test_should_not_deliver_duplicate(self):
        """A request whose result was routed should not be routed again."""
        guard = RequestDeliveryGuard()

        guard.mark_delivered("clipboard-1", result_kind="text", success=True)

        assert guard.should_deliver("clipboard-1") is False

    def test_get_returns_entry(self):
        clock = _Clock()
        guard = RequestDeliveryGuard(clock=clock)

        guard.mark_delivered("geolocation-1", result_kind="position_error", success=False)

        entry = guard.get("geolocation-1")
        assert entry == DeliveredRequest(
            request_id="geolocation-1",
            result_kind="position_error",
            success=False,
            delivered_at=clock.now,
        )

    def test_get_returns_none_for_unknown(self):
        guard = RequestDeliveryGuard()

        assert guard.get("unknown") is None

    def test_entries_expire_after_ttl(self):
        """Expired entries are delivered again and forgotten."""
        clock = _Clock()
        guard = RequestDeliveryGuard(ttl_seconds=60, clock=clock)

        guard.mark_delivered("clipboard-1", result_kind="text", success=True)
        clock.advance(61)

        assert guard.get("clipboard-1") is None
        assert guard.should_deliver("clipboard-1") is True

    def test_entry_count_and_clear(self):
        guard = RequestDeliveryGuard()

        guard.mark_delivered("a", result_kind="text", success=True)
        guard.mark_delivered("b", result_kind="image", success=True)
        assert guard.entry_count == 2

        guard.clear()
        assert guard.entry_count == 0

    def test_periodic_cleanup_drops_expired_entries(self):
        clock = _Clock()
        guard = RequestDeliveryGuard(ttl_seconds=10, cleanup_interval=2, clock=clock)

        guard.mark_delivered("old", result_kind="text", success=True)
        clock.advance(30)
        guard.should_deliver("fresh")  # second operation triggers cleanup

        assert guard.entry_count == 0

    def test_forced_cleanup_when_max_entries_reached(self):
        """Reaching max_entries evicts the oldest half."""
        clock = _Clock()
        guard = RequestDeliveryGuard(
            ttl_seconds=3600, max_entries=4, cleanup_interval=1000, clock=clock
        )

        for index in range(4):
            guard.mark_delivered(f"req-{index}", result_kind="text", success=True)
            clock.advance(1)

        guard.should_deliver("req-new")

        assert guard.entry_count == 2
        assert guard.get("req-0") is None
        assert guard.get("req-3") is not None
