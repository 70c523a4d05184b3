"""Tests for CDP event fan-out and the download completion barrier."""

import asyncio
from unittest.mock import MagicMock

import pytest

from supplier_sync.browser.events import (
    DOWNLOAD_PROGRESS,
    PAGE_LIFECYCLE,
    DownloadTracker,
    EventHub,
    is_network_idle,
)

pytestmark = pytest.mark.anyio


@pytest.fixture
def cdp_client() -> MagicMock:
    return MagicMock()


class TestEventHub:
    def test_registers_one_handler_per_method(self, cdp_client):
        hub = EventHub(cdp_client)

        with hub.listen(PAGE_LIFECYCLE, lambda event, session_id: None):
            with hub.listen(PAGE_LIFECYCLE, lambda event, session_id: None):
                assert hub.listener_count(PAGE_LIFECYCLE) == 2

        assert cdp_client.register.Page.lifecycleEvent.call_count == 1

    def test_listener_removed_when_block_exits(self, cdp_client):
        hub = EventHub(cdp_client)
        received = []

        with hub.listen(DOWNLOAD_PROGRESS, lambda event, session_id: received.append(event)):
            hub.dispatch(DOWNLOAD_PROGRESS, {"guid": "a"})

        hub.dispatch(DOWNLOAD_PROGRESS, {"guid": "b"})
        assert received == [{"guid": "a"}]
        assert hub.listener_count(DOWNLOAD_PROGRESS) == 0

    def test_listener_removed_when_block_raises(self, cdp_client):
        hub = EventHub(cdp_client)

        with pytest.raises(ValueError):
            with hub.listen(PAGE_LIFECYCLE, lambda event, session_id: None):
                raise ValueError("step failed")

        assert hub.listener_count(PAGE_LIFECYCLE) == 0

    def test_registered_handler_dispatches_with_session_id(self, cdp_client):
        hub = EventHub(cdp_client)
        received = []

        with hub.listen(PAGE_LIFECYCLE, lambda event, session_id: received.append((event["name"], session_id))):
            handler = cdp_client.register.Page.lifecycleEvent.call_args.args[0]
            handler({"name": "load"}, "session-1")

        assert received == [("load", "session-1")]

    def test_failing_listener_does_not_block_others(self, cdp_client):
        hub = EventHub(cdp_client)
        received = []

        def broken(event, session_id):
            raise RuntimeError("listener bug")

        with hub.listen(PAGE_LIFECYCLE, broken), hub.listen(PAGE_LIFECYCLE, lambda e, s: received.append(e)):
            hub.dispatch(PAGE_LIFECYCLE, {"name": "load"})

        assert received == [{"name": "load"}]

    async def test_expect_resolves_on_matching_event(self, cdp_client):
        hub = EventHub(cdp_client)

        with hub.expect(PAGE_LIFECYCLE, is_network_idle) as settled:
            hub.dispatch(PAGE_LIFECYCLE, {"name": "DOMContentLoaded"})
            assert not settled.done()
            hub.dispatch(PAGE_LIFECYCLE, {"name": "networkIdle", "frameId": "f1"})
            event = await settled

        assert event["frameId"] == "f1"
        assert hub.listener_count(PAGE_LIFECYCLE) == 0

    async def test_expect_cancels_unresolved_future(self, cdp_client):
        hub = EventHub(cdp_client)

        with hub.expect(PAGE_LIFECYCLE, is_network_idle) as settled:
            pass

        assert settled.cancelled()


class TestDownloadTracker:
    async def test_released_after_expected_distinct_completions(self):
        tracker = DownloadTracker(expected=2)

        tracker.on_will_begin({"guid": "a", "url": "https://x.example/a.pdf"}, None)
        tracker.on_progress({"guid": "a", "state": "inProgress"}, None)
        tracker.on_progress({"guid": "a", "state": "completed"}, None)
        tracker.on_progress({"guid": "a", "state": "completed"}, None)
        assert not tracker.done

        tracker.on_progress({"guid": "b", "state": "completed"}, None)
        assert tracker.done
        await asyncio.wait_for(tracker.wait(), timeout=1)
        assert tracker.started == ["a"]

    async def test_nothing_expected_is_released_immediately(self):
        tracker = DownloadTracker(expected=0)
        assert tracker.done
        await asyncio.wait_for(tracker.wait(), timeout=1)

    def test_canceled_downloads_do_not_count(self):
        tracker = DownloadTracker(expected=1)
        tracker.on_progress({"guid": "a", "state": "canceled"}, None)
        assert not tracker.done
