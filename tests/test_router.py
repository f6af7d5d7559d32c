"""Tests for ResultRouter delivery semantics."""

import asyncio

import pytest

from browserkit.core.codec import decode_clipboard_payload, decode_geolocation_payload
from browserkit.core.models import (
    CapabilityAction,
    ImageResult,
    PositionErrorResult,
    PositionResult,
    TextResult,
)
from browserkit.core.protocols import BrowserEvent
from browserkit.correlation import new_request_id
from browserkit.router import ResultRouter


def _clipboard_event(data, *, target=None, request_id=None) -> BrowserEvent:
    return BrowserEvent(
        name="onClipboardAction", data=data, target=target, request_id=request_id
    )


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_same_event_object_is_delivered_once(self):
        """A desktop-scoped event fanned out to every root reaches callbacks once."""
        router = ResultRouter(decode_clipboard_payload)
        received = []
        router.subscribe(received.append)

        event = _clipboard_event({"action": "READ_TEXT", "text": "hello"})
        for _ in range(3):
            await router.handle_event(event)

        assert len(received) == 1
        assert received[0].text == "hello"

    @pytest.mark.asyncio
    async def test_distinct_events_with_equal_data_are_both_delivered(self):
        """Without a request id, only identity dedup applies."""
        router = ResultRouter(decode_clipboard_payload)
        received = []
        router.subscribe(received.append)

        data = {"action": "READ_TEXT", "text": "same"}
        await router.handle_event(_clipboard_event(data))
        await router.handle_event(_clipboard_event(dict(data)))

        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_redelivered_request_id_is_dropped(self):
        router = ResultRouter(decode_clipboard_payload)
        received = []
        router.subscribe(received.append)

        token = new_request_id("clipboard")
        data = {"action": "READ_TEXT", "text": "once", "requestId": token}
        await router.handle_event(_clipboard_event(data))
        await router.handle_event(_clipboard_event(dict(data)))

        assert [result.request_id for result in received] == [token]

    @pytest.mark.asyncio
    async def test_request_id_from_envelope_is_used(self):
        router = ResultRouter(decode_clipboard_payload)
        received = []
        router.subscribe(received.append)

        token = new_request_id("clipboard")
        data = {"action": "READ_TEXT", "text": "x"}
        await router.handle_event(_clipboard_event(data, request_id=token))
        await router.handle_event(_clipboard_event(dict(data), request_id=token))

        assert len(received) == 1
        assert received[0].request_id == token


class TestSubscribers:
    @pytest.mark.asyncio
    async def test_callbacks_by_kind_with_default(self):
        router = ResultRouter(decode_clipboard_payload)
        texts = []
        images = []
        router.subscribe(texts.append, callbacks={"image": images.append})

        await router.handle_event(_clipboard_event({"action": "READ_TEXT", "text": "t"}))
        await router.handle_event(
            _clipboard_event({"action": "READ_IMAGE", "mimeType": "image/png"})
        )

        assert [type(result) for result in texts] == [TextResult]
        assert [type(result) for result in images] == [ImageResult]

    @pytest.mark.asyncio
    async def test_action_filter(self):
        router = ResultRouter(decode_clipboard_payload)
        writes = []
        router.subscribe(writes.append, actions=[CapabilityAction.WRITE_TEXT])

        await router.handle_event(_clipboard_event({"action": "READ_TEXT", "text": "r"}))
        await router.handle_event(_clipboard_event({"action": "WRITE_TEXT"}))

        assert [result.action for result in writes] == [CapabilityAction.WRITE_TEXT]

    @pytest.mark.asyncio
    async def test_targeted_result_reaches_only_matching_subscriber(self):
        router = ResultRouter(decode_clipboard_payload)
        main = []
        sidebar = []
        anywhere = []
        router.subscribe(main.append, target="main")
        router.subscribe(sidebar.append, target="sidebar")
        router.subscribe(anywhere.append)

        await router.handle_event(
            _clipboard_event({"action": "READ_TEXT", "text": "t"}, target="sidebar")
        )

        assert main == []
        assert len(sidebar) == 1
        assert anywhere == []

    @pytest.mark.asyncio
    async def test_untargeted_result_reaches_every_subscriber(self):
        router = ResultRouter(decode_clipboard_payload)
        main = []
        anywhere = []
        router.subscribe(main.append, target="main")
        router.subscribe(anywhere.append)

        await router.handle_event(_clipboard_event({"action": "READ_TEXT"}))

        assert len(main) == 1
        assert len(anywhere) == 1

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self):
        router = ResultRouter(decode_geolocation_payload)
        received = []

        async def on_position(result):
            await asyncio.sleep(0)
            received.append(result)

        router.subscribe(callbacks={"position": on_position})

        await router.handle_event(
            BrowserEvent(
                name="onGetLocation",
                data={"position": {"timestamp": 1, "coords": {"latitude": 1, "longitude": 2}}},
            )
        )

        assert len(received) == 1
        assert isinstance(received[0], PositionResult)

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_block_others(self, caplog):
        router = ResultRouter(decode_clipboard_payload, name="clipboard")
        received = []

        def broken(result):
            raise RuntimeError("boom")

        router.subscribe(broken)
        router.subscribe(received.append)

        with caplog.at_level("ERROR"):
            await router.handle_event(_clipboard_event({"action": "READ_TEXT"}))

        assert len(received) == 1
        assert "clipboard result callback failed" in caplog.text

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        router = ResultRouter(decode_clipboard_payload)
        received = []
        subscription = router.subscribe(received.append)

        router.unsubscribe(subscription)
        router.unsubscribe(subscription)
        await router.handle_event(_clipboard_event({"action": "READ_TEXT"}))

        assert received == []
        assert router.subscription_count == 0

    def test_subscribe_requires_a_callback(self):
        router = ResultRouter(decode_clipboard_payload)

        with pytest.raises(ValueError):
            router.subscribe()


class TestPendingRequests:
    @pytest.mark.asyncio
    async def test_future_resolves_by_request_id(self):
        router = ResultRouter(decode_geolocation_payload)
        first_id = new_request_id("geolocation")
        second_id = new_request_id("geolocation")
        first = router.expect(first_id, CapabilityAction.GET_POSITION)
        second = router.expect(second_id, CapabilityAction.GET_POSITION)

        await router.handle_event(
            BrowserEvent(
                name="onGetLocation",
                data={"error": {"code": 1, "message": "denied"}, "requestId": second_id},
            )
        )

        assert second.done()
        assert not first.done()
        result = second.result()
        assert isinstance(result, PositionErrorResult)
        assert result.request_id == second_id
        assert router.pending_requests() == [first_id]

    @pytest.mark.asyncio
    async def test_tokenless_result_resolves_oldest_matching_action(self):
        router = ResultRouter(decode_clipboard_payload)
        write = router.expect("clipboard-w", CapabilityAction.WRITE_TEXT)
        read_first = router.expect("clipboard-r1", CapabilityAction.READ_TEXT)
        read_second = router.expect("clipboard-r2", CapabilityAction.READ_TEXT)

        await router.handle_event(_clipboard_event({"action": "READ_TEXT", "text": "a"}))

        assert read_first.done()
        assert read_first.result().text == "a"
        assert not read_second.done()
        assert not write.done()

    @pytest.mark.asyncio
    async def test_tokenless_targeted_result_skips_other_targets(self):
        router = ResultRouter(decode_clipboard_payload)
        main = router.expect("clipboard-a", CapabilityAction.READ_TEXT, target="main")
        sidebar = router.expect(
            "clipboard-b", CapabilityAction.READ_TEXT, target="sidebar"
        )

        await router.handle_event(
            _clipboard_event({"action": "READ", "text": "s"}, target="sidebar")
        )

        assert sidebar.done()
        assert sidebar.result().text == "s"
        assert not main.done()

    @pytest.mark.asyncio
    async def test_result_without_echoed_target_uses_request_target(self):
        """Subscribers see the result where the request was sent."""
        router = ResultRouter(decode_clipboard_payload)
        main = []
        sidebar = []
        router.subscribe(main.append, target="main")
        router.subscribe(sidebar.append, target="sidebar")

        token = new_request_id("clipboard")
        future = router.expect(token, CapabilityAction.READ_TEXT, target="sidebar")
        await router.handle_event(
            _clipboard_event({"action": "READ_TEXT", "text": "s", "requestId": token})
        )

        assert future.result().text == "s"
        assert main == []
        assert [result.text for result in sidebar] == ["s"]

    @pytest.mark.asyncio
    async def test_cancelled_future_is_forgotten(self):
        router = ResultRouter(decode_clipboard_payload)
        future = router.expect("clipboard-1", CapabilityAction.READ_TEXT)

        future.cancel()
        await asyncio.sleep(0)

        assert router.pending_count == 0

    @pytest.mark.asyncio
    async def test_close_cancels_pending_and_ignores_later_events(self):
        router = ResultRouter(decode_clipboard_payload)
        received = []
        router.subscribe(received.append)
        future = router.expect("clipboard-1", CapabilityAction.READ_TEXT)

        router.close()
        await router.handle_event(_clipboard_event({"action": "READ_TEXT"}))

        assert future.cancelled()
        assert received == []
        with pytest.raises(RuntimeError):
            router.expect("clipboard-2", CapabilityAction.READ_TEXT)
