"""
Manual (human-assisted) challenge solving.

`/manual/refresh` opens a headful Chrome with remote debugging so an operator can solve the
challenge by hand. While that happens, the poller reads cookies from the session on a fixed
tick until it captures a credential or its deadline passes.
"""

import asyncio
import enum
from typing import Optional

from . import constants
from .browser import BrowserManager, BrowserSession
from .browser_utils import _cancel_background_task
from .credentials import CredentialStore


def _m():
    """Late import of main module so tests can patch main.X and it is reflected here."""
    from . import main
    return main


class PollerState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"


async def pull_credential_from_session(
    browsers: BrowserManager,
    session: Optional[BrowserSession],
    store: CredentialStore,
    config: dict,
) -> bool:
    """
    Try to capture the credential from every open page of `session`.

    If no page yields it, open a fresh page on the upstream root and read from there.
    A failed read on one page is logged and the next page is tried.
    """
    if session is None or not session.is_connected():
        return False
    upstream = config["upstream"]

    for page in await browsers.list_pages(session):
        try:
            cookies = await browsers.read_cookies(page, upstream)
        except Exception as e:
            _m().debug_print(f"⚠️ [manual] page read failed: {e}")
            continue
        if store.set(cookies):
            return True

    page = await browsers.new_page(session)
    try:
        await browsers.navigate(
            page,
            upstream,
            wait_until=constants.PAGE_READY_STATE,
            timeout_ms=int(config.get("pull_navigation_timeout_ms") or constants.DEFAULT_PULL_NAVIGATION_TIMEOUT_MS),
        )
        cookies = await browsers.read_cookies(page, upstream)
        return store.set(cookies)
    finally:
        await browsers.close_page(page)


class ManualSessionPoller:
    """Idle/Polling state machine; at most one poll schedule exists at any time."""

    def __init__(self, config: dict, store: CredentialStore, browsers: BrowserManager):
        self.config = config
        self.store = store
        self.browsers = browsers
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> PollerState:
        if self._task is not None and not self._task.done():
            return PollerState.POLLING
        return PollerState.IDLE

    async def start(self) -> BrowserSession:
        """
        (Re)start polling against the interactive session and return that session.

        Restarting while polling replaces the old schedule instead of adding a second one.
        Raises SessionLaunchError if the interactive browser cannot be started.
        """
        await self.stop()
        session = await self.browsers.launch(headless=False)
        # A concurrent start() may have slipped in while we were launching.
        await self.stop()
        self._task = asyncio.create_task(self._poll(session))
        _m().debug_print("🖐️ [manual] polling for cf_clearance started")
        return session

    async def stop(self) -> None:
        task, self._task = self._task, None
        await _cancel_background_task(task)

    async def pull(self) -> bool:
        """Read the interactive session once, right now."""
        session = self.browsers.get_session(headless=False)
        return await pull_credential_from_session(self.browsers, session, self.store, self.config)

    def _poll_interval(self) -> float:
        """Seconds between ticks; a zero or negative setting means the default, never a busy loop."""
        interval_ms = int(self.config.get("manual_poll_interval_ms") or 0)
        if interval_ms <= 0:
            interval_ms = constants.DEFAULT_MANUAL_POLL_INTERVAL_MS
        return interval_ms / 1000

    async def _poll(self, session: BrowserSession) -> None:
        interval = self._poll_interval()
        max_duration = max(0, int(self.config.get("manual_poll_max_ms") or 0)) / 1000
        try:
            captured = await asyncio.wait_for(self._poll_until_captured(session, interval), timeout=max_duration)
        except asyncio.TimeoutError:
            _m().debug_print("⏱️ [manual] polling window elapsed without a credential")
            return
        if captured:
            _m().debug_print("✅ [manual] cf_clearance captured via polling")

    async def _poll_until_captured(self, session: BrowserSession, interval: float) -> bool:
        while True:
            await asyncio.sleep(interval)
            try:
                if await pull_credential_from_session(self.browsers, session, self.store, self.config):
                    return True
            except Exception as e:
                _m().debug_print(f"⚠️ [manual] poll failed: {e}")
