"""Scoped fan-out of CDP events to step-local listeners.

cdp-use keeps one handler per event method on the client. ``EventHub``
registers that single handler once and dispatches each event to the
listeners currently subscribed. Listeners are only ever added through context
managers, so a listener lives exactly as long as the step (or run) that
installed it.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import partial
from typing import Any

logger = logging.getLogger(__name__)

EventListener = Callable[[dict[str, Any], str | None], None]

PAGE_LIFECYCLE = "Page.lifecycleEvent"
DOWNLOAD_WILL_BEGIN = "Browser.downloadWillBegin"
DOWNLOAD_PROGRESS = "Browser.downloadProgress"
REQUEST_PAUSED = "Fetch.requestPaused"
REQUEST_WILL_BE_SENT = "Network.requestWillBeSent"
RESPONSE_RECEIVED = "Network.responseReceived"


class EventHub:
    """Dispatches CDP events to scoped listeners."""

    def __init__(self, cdp_client: Any):
        self._cdp_client = cdp_client
        self._listeners: dict[str, list[EventListener]] = defaultdict(list)
        self._registered: set[str] = set()

    def _ensure_registered(self, method: str) -> None:
        if method in self._registered:
            return
        domain, event = method.split(".", 1)
        register = getattr(getattr(self._cdp_client.register, domain), event)
        register(partial(self.dispatch, method))
        self._registered.add(method)

    def dispatch(self, method: str, event: dict[str, Any], session_id: str | None = None) -> None:
        """Deliver ``event`` to every listener of ``method``. Called by cdp-use."""
        for listener in list(self._listeners.get(method, ())):
            try:
                listener(event, session_id)
            except Exception:
                logger.exception(f"Listener for {method} failed")

    def listener_count(self, method: str) -> int:
        return len(self._listeners.get(method, ()))

    @contextmanager
    def listen(self, method: str, listener: EventListener) -> Iterator[None]:
        """Subscribe ``listener`` to ``method`` for the duration of the block."""
        self._ensure_registered(method)
        self._listeners[method].append(listener)
        try:
            yield
        finally:
            self._listeners[method].remove(listener)

    @contextmanager
    def expect(self, method: str, predicate: Callable[[dict[str, Any]], bool]) -> Iterator[asyncio.Future]:
        """Yield a future resolved by the first ``method`` event matching ``predicate``.

        Subscribe before triggering the action that produces the event:

            with hub.expect(PAGE_LIFECYCLE, is_network_idle) as settled:
                await navigate()
                await settled
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_event(event: dict[str, Any], session_id: str | None) -> None:
            if not future.done() and predicate(event):
                future.set_result(event)

        with self.listen(method, on_event):
            try:
                yield future
            finally:
                if not future.done():
                    future.cancel()


def is_network_idle(event: dict[str, Any]) -> bool:
    return event.get("name") == "networkIdle"


class DownloadTracker:
    """Counting barrier over browser download events.

    Released once ``expected`` distinct downloads (keyed by guid) have reported
    the ``completed`` state.
    """

    def __init__(self, expected: int):
        self.expected = expected
        self.started: list[str] = []
        self.completed: set[str] = set()
        self._done = asyncio.Event()
        if expected <= 0:
            self._done.set()

    def on_will_begin(self, event: dict[str, Any], session_id: str | None) -> None:
        guid = event.get("guid", "")
        self.started.append(guid)
        logger.debug(f"Download begins: guid={guid} url={event.get('url', '')[:120]}")

    def on_progress(self, event: dict[str, Any], session_id: str | None) -> None:
        if event.get("state") != "completed":
            return
        guid = event.get("guid", "")
        if guid in self.completed:
            return
        self.completed.add(guid)
        logger.debug(f"Download completed: guid={guid} ({len(self.completed)}/{self.expected})")
        if len(self.completed) >= self.expected:
            self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    async def wait(self) -> None:
        await self._done.wait()
