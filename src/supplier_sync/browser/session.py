"""Browser session primitives used by recipe steps.

``RecipeBrowser`` owns one browser-use ``BrowserSession`` for a recipe run and
talks to Chrome through its CDP client. All page-level commands are sent with
the ``session_id`` of the active tab, which bypasses browser-use's watchdog
system; download behavior is configured browser-wide.

Selectors starting with ``/`` or ``(`` are treated as XPath expressions, every
other selector as CSS.
"""

import asyncio
import json
import logging
from contextlib import ExitStack
from collections.abc import Awaitable
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from ..config import BrowserSettings, EngineSettings
from ..exceptions import BrowserError, BrowserProtocolError, BrowserStartupError
from .events import (
    DOWNLOAD_PROGRESS,
    DOWNLOAD_WILL_BEGIN,
    PAGE_LIFECYCLE,
    REQUEST_PAUSED,
    DownloadTracker,
    EventHub,
    is_network_idle,
)

if TYPE_CHECKING:
    from browser_use.browser.session import BrowserSession, CDPSession

logger = logging.getLogger(__name__)

DownloadBehavior = Literal["allow", "allowAndName", "deny", "default"]

# Resolves a selector to a single element (CSS or XPath)
_FIND_JS = """
const __find = (sel) => (sel.startsWith('/') || sel.startsWith('('))
    ? document.evaluate(sel, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue
    : document.querySelector(sel);
"""

_FIND_ALL_JS = """
const __findAll = (sel) => {
    if (sel.startsWith('/') || sel.startsWith('(')) {
        const snap = document.evaluate(sel, document, null, XPathResult.ORDERED_NODE_SNAPSHOT_TYPE, null);
        return Array.from({length: snap.snapshotLength}, (_, i) => snap.snapshotItem(i));
    }
    return Array.from(document.querySelectorAll(sel));
};
const __fullXPath = (node) => {
    const parts = [];
    for (let n = node; n && n.nodeType === Node.ELEMENT_NODE; n = n.parentNode) {
        let index = 1;
        for (let s = n.previousElementSibling; s; s = s.previousElementSibling) {
            if (s.nodeName === n.nodeName) index++;
        }
        parts.unshift(n.nodeName.toLowerCase() + '[' + index + ']');
    }
    return '/' + parts.join('/');
};
"""

_VISIBLE_JS = """
const __visible = (el) => !!el && !!(el.offsetWidth || el.offsetHeight || el.getClientRects().length)
    && window.getComputedStyle(el).visibility !== 'hidden';
"""


def _wrap(body: str, selector: str) -> str:
    """Build an IIFE with the helper functions and ``sel`` bound to ``selector``."""
    return f"(() => {{ {_FIND_JS} {_FIND_ALL_JS} {_VISIBLE_JS} const sel = {json.dumps(selector)}; {body} }})()"


class RecipeBrowser:
    """One Chrome instance driven over CDP for the duration of a recipe run.

    Usage:
        async with RecipeBrowser(browser_settings, engine_settings) as browser:
            await browser.set_download_behavior("allow", staging_dir)
            await browser.block_images()
            await browser.navigate("https://example.com/login")
            await browser.click("#submit")
    """

    def __init__(self, browser_settings: BrowserSettings, engine_settings: EngineSettings, headless: bool | None = None):
        self.browser_settings = browser_settings
        self.engine_settings = engine_settings
        self.headless = browser_settings.headless if headless is None else headless
        self.chrome_version = ""

        self._session: BrowserSession | None = None
        self._cdp_session: CDPSession | None = None
        self.events: EventHub | None = None

        # Run-scoped listeners and the tasks they spawn
        self._run_listeners = ExitStack()
        self._pending_tasks: set[asyncio.Task] = set()
        self._images_blocked = False

    # --- Lifecycle ---

    async def start(self) -> None:
        """Launch Chrome and prepare the active tab.

        Raises:
            BrowserStartupError: if the browser or its CDP session cannot be created
        """
        from browser_use import BrowserProfile
        from browser_use.browser.session import BrowserSession

        profile = BrowserProfile(headless=self.headless, args=list(self.browser_settings.chrome_args))
        try:
            self._session = BrowserSession(browser_profile=profile)
            await self._session.start()
            self._cdp_session = await self._session.get_or_create_cdp_session()

            await self.cdp.send.Page.enable(session_id=self.session_id)
            await self.cdp.send.Runtime.enable(session_id=self.session_id)
            await self.cdp.send.Network.enable(session_id=self.session_id)
            await self.cdp.send.Page.setLifecycleEventsEnabled(params={"enabled": True}, session_id=self.session_id)

            version = await self.cdp.send.Browser.getVersion()
            self.chrome_version = str(version.get("product", "")).strip()
        except Exception as e:
            await self.stop()
            raise BrowserStartupError(f"Could not start browser: {e}") from e

        self.events = EventHub(self.cdp)
        logger.info(f"Browser started ({self.chrome_version or 'unknown version'})")

    async def stop(self) -> None:
        """Release run-scoped listeners and close the browser."""
        self._run_listeners.close()
        for task in self._pending_tasks:
            if not task.done():
                task.cancel()
        self._pending_tasks.clear()

        if self._session is not None:
            session, self._session = self._session, None
            try:
                await session.stop()
            except Exception as e:
                logger.warning(f"Error while stopping browser: {e}")
        self._cdp_session = None

    async def __aenter__(self) -> "RecipeBrowser":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _send(self, command: Awaitable[Any]) -> Any:
        """Await a CDP command, reporting protocol and connection failures as ``BrowserError``."""
        try:
            return await command
        except ConnectionError as e:
            raise BrowserError(f"Browser connection lost: {e}") from e
        except RuntimeError as e:
            raise BrowserProtocolError(f"CDP command failed: {e}") from e

    @property
    def cdp(self) -> Any:
        if self._session is None:
            raise BrowserError("Browser is not running")
        return self._session.cdp_client

    @property
    def session_id(self) -> str:
        if self._cdp_session is None:
            raise BrowserError("Browser has no active tab")
        return self._cdp_session.session_id

    @property
    def hub(self) -> EventHub:
        if self.events is None:
            raise BrowserError("Browser is not running")
        return self.events

    # --- Navigation ---

    async def navigate(self, url: str, wait_settled: bool = True) -> None:
        """Navigate the tab to ``url`` and, by default, wait until the network is idle."""
        with self.hub.expect(PAGE_LIFECYCLE, is_network_idle) as settled:
            result = await self._send(
                self.cdp.send.Page.navigate(
                    params={"url": url, "transitionType": "address_bar"},
                    session_id=self.session_id,
                )
            )
            if result.get("errorText"):
                raise BrowserError(f"Navigation to {url} failed: {result['errorText']}")
            if wait_settled:
                await settled

    async def location(self) -> str:
        """Current URL of the tab."""
        return str(await self.evaluate("window.location.href"))

    # --- Downloads and interception ---

    async def set_download_behavior(self, behavior: DownloadBehavior, download_path: Path) -> None:
        """Configure where and how the browser stores downloads, with progress events enabled."""
        await self._send(
            self.cdp.send.Browser.setDownloadBehavior(
                params={"behavior": behavior, "downloadPath": str(download_path), "eventsEnabled": True},
            )
        )

    async def block_images(self) -> None:
        """Fail every image request at the network layer; continue everything else."""
        if self._images_blocked:
            return
        self._run_listeners.enter_context(self.hub.listen(REQUEST_PAUSED, self._on_request_paused))
        await self._send(self.cdp.send.Fetch.enable(params={"patterns": [{"urlPattern": "*"}]}, session_id=self.session_id))
        self._images_blocked = True

    def _on_request_paused(self, event: dict[str, Any], session_id: str | None) -> None:
        task = asyncio.get_running_loop().create_task(self._resolve_paused_request(event, session_id))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _resolve_paused_request(self, event: dict[str, Any], session_id: str | None) -> None:
        request_id = event.get("requestId", "")
        try:
            if event.get("resourceType") == "Image":
                await self.cdp.send.Fetch.failRequest(
                    params={"requestId": request_id, "errorReason": "BlockedByClient"},
                    session_id=session_id,
                )
            else:
                await self.cdp.send.Fetch.continueRequest(params={"requestId": request_id}, session_id=session_id)
        except Exception as e:
            logger.debug(f"Could not resolve paused request {request_id}: {e}")

    # --- Scripts ---

    async def evaluate(self, expression: str, await_promise: bool = True) -> Any:
        """Evaluate ``expression`` in the page and return its JSON value."""
        result = await self._send(
            self.cdp.send.Runtime.evaluate(
                params={"expression": expression, "returnByValue": True, "awaitPromise": await_promise},
                session_id=self.session_id,
            )
        )
        if result.get("exceptionDetails"):
            details = result["exceptionDetails"]
            description = details.get("exception", {}).get("description") or details.get("text", "Unknown error")
            raise BrowserError(f"Script failed: {description}")
        return result.get("result", {}).get("value")

    # --- Elements ---

    async def _poll(self, expression: str, timeout: float | None = None) -> None:
        async with asyncio.timeout(timeout):
            while True:
                try:
                    if await self.evaluate(expression):
                        return
                except BrowserProtocolError as e:
                    logger.debug(f"Retrying element wait: {e}")
                await asyncio.sleep(self.engine_settings.poll_interval)

    async def wait_ready(self, selector: str, timeout: float | None = None) -> None:
        """Wait until an element matching ``selector`` exists in the DOM."""
        await self._poll(_wrap("return !!__find(sel);", selector), timeout)

    async def wait_visible(self, selector: str, timeout: float | None = None) -> None:
        """Wait until an element matching ``selector`` exists and is rendered."""
        await self._poll(_wrap("return __visible(__find(sel));", selector), timeout)

    async def remove_element(self, selector: str) -> None:
        await self.evaluate(
            _wrap(
                "const el = __find(sel); if (!el) throw new Error('No node matches ' + sel); el.parentNode.removeChild(el); return true;",
                selector,
            )
        )

    async def click(self, selector: str) -> None:
        """Wait for ``selector`` and click the centre of the element with real mouse events."""
        await self.wait_ready(selector)
        box = await self.evaluate(
            _wrap(
                "const el = __find(sel); if (!el) throw new Error('No node matches ' + sel);"
                " el.scrollIntoView({block: 'center', inline: 'center'});"
                " const r = el.getBoundingClientRect(); return {x: r.left + r.width / 2, y: r.top + r.height / 2};",
                selector,
            )
        )
        for event_type in ("mouseMoved", "mousePressed", "mouseReleased"):
            params: dict[str, Any] = {"type": event_type, "x": box["x"], "y": box["y"]}
            if event_type != "mouseMoved":
                params.update({"button": "left", "clickCount": 1})
            await self._send(self.cdp.send.Input.dispatchMouseEvent(params=params, session_id=self.session_id))

    async def type_text(self, selector: str, text: str) -> None:
        """Wait for ``selector``, focus it and insert ``text``."""
        await self.wait_ready(selector)
        await self.evaluate(
            _wrap("const el = __find(sel); if (!el) throw new Error('No node matches ' + sel); el.focus(); return true;", selector)
        )
        await self._send(self.cdp.send.Input.insertText(params={"text": text}, session_id=self.session_id))

    async def node_xpaths(self, selector: str) -> list[str]:
        """Resolve every element matching ``selector`` to its full XPath."""
        paths = await self.evaluate(_wrap("return __findAll(sel).map(__fullXPath);", selector))
        return list(paths or [])

    # --- Bounded download ---

    async def download_all(self, selector: str, suffix: str) -> int:
        """Trigger downloads for the nodes matching ``selector`` and wait for them.

        Only the first ``download_click_limit`` nodes are used to avoid supplier
        rate limits. For each node, the node is clicked, then the element at
        ``<node xpath><suffix>`` is awaited and clicked. Blocks until as many
        downloads as were triggered report completion.

        Returns:
            Number of downloads triggered
        """
        await self.wait_ready(selector)
        nodes = await self.node_xpaths(selector)
        selected = nodes[: self.engine_settings.download_click_limit]
        logger.debug(f"downloadAll matched {len(nodes)} nodes, triggering {len(selected)}")

        tracker = DownloadTracker(expected=len(selected))
        with (
            self.hub.listen(DOWNLOAD_WILL_BEGIN, tracker.on_will_begin),
            self.hub.listen(DOWNLOAD_PROGRESS, tracker.on_progress),
        ):
            for i, xpath in enumerate(selected):
                if i > 0:
                    await asyncio.sleep(self.engine_settings.download_click_delay)
                logger.debug(f"Triggering download click: {xpath}{suffix}")
                await self.click(xpath)
                await self.wait_visible(xpath + suffix)
                await self.click(xpath + suffix)
            await tracker.wait()

        logger.info(f"All downloads completed ({len(selected)})")
        return len(selected)
