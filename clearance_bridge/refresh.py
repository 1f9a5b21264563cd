"""
Credential refresh via an automated browser.

Every concurrent caller shares one in-flight refresh: the first caller drives the browser,
the rest await the same task and see the same outcome (success, or the same exception).
"""

import asyncio

from . import constants
from .browser import BrowserManager
from .browser_utils import SingleFlight, normalize_path
from .credentials import CredentialStore
from .errors import NoCredentialFound


def _m():
    """Late import of main module so tests can patch main.X and it is reflected here."""
    from . import main
    return main


class RefreshCoordinator:
    def __init__(self, config: dict, store: CredentialStore, browsers: BrowserManager):
        self.config = config
        self.store = store
        self.browsers = browsers
        self._flight = SingleFlight()

    @property
    def in_flight(self) -> bool:
        return self._flight.inflight(constants.REFRESH_KEY)

    async def refresh(self, interactive: bool = False, path: str = "/") -> None:
        """
        Refresh the credential, joining an in-flight refresh if there is one.

        Raises NoCredentialFound or NavigationTimeout (both RefreshError) on failure,
        SessionLaunchError if the browser cannot be started.
        """
        return await self._flight.do(
            constants.REFRESH_KEY,
            lambda: self._run(bool(interactive), normalize_path(path)),
        )

    async def _run(self, interactive: bool, path: str) -> None:
        upstream = self.config["upstream"]
        url = f"{upstream}{path}"
        _m().debug_print(f"🔄 [refresh] visiting {url} (interactive={interactive})")

        session = await self.browsers.launch(headless=not interactive)
        page = await self.browsers.new_page(session)
        try:
            await self.browsers.navigate(
                page,
                url,
                wait_until=constants.PAGE_READY_STATE,
                timeout_ms=int(self.config.get("navigation_timeout_ms") or constants.DEFAULT_NAVIGATION_TIMEOUT_MS),
            )
            wait_ms = max(0, int(self.config.get("wait_ms") or 0))
            if wait_ms:
                await asyncio.sleep(wait_ms / 1000)
            cookies = await self.browsers.read_cookies(page, upstream)
            if not self.store.set(cookies):
                raise NoCredentialFound(self.store.cookie_name, url)
        finally:
            await self.browsers.close_page(page)

    async def aclose(self) -> None:
        await self._flight.cancel_all()
