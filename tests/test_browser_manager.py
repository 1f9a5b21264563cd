import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from clearance_bridge import constants, main
from clearance_bridge.browser import BrowserManager, BrowserSession
from clearance_bridge.errors import NavigationTimeout, SessionLaunchError, SessionReadError
from tests._bridge_test_utils import make_config


class TestBrowserManager(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        debug_patch = patch.object(main, "DEBUG", False)
        debug_patch.start()
        self.addCleanup(debug_patch.stop)
        self.manager = BrowserManager(make_config(extra_args=["--proxy-server=socks5://127.0.0.1:1080"], debug_port=9333))

    async def test_navigate_maps_playwright_timeout(self) -> None:
        page = MagicMock()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 60000ms exceeded."))
        with self.assertRaises(NavigationTimeout) as caught:
            await self.manager.navigate(page, "https://upstream.test/", timeout_ms=60000)
        self.assertEqual(caught.exception.timeout_ms, 60000)
        page.goto.assert_awaited_once_with(
            "https://upstream.test/", wait_until=constants.PAGE_READY_STATE, timeout=60000
        )

    async def test_read_cookies_normalises_entries(self) -> None:
        page = MagicMock()
        page.context.cookies = AsyncMock(
            return_value=[
                {"name": "cf_clearance", "value": "abc", "domain": ".upstream.test", "path": "/", "httpOnly": True},
            ]
        )
        cookies = await self.manager.read_cookies(page, "https://upstream.test")
        self.assertEqual(cookies, [{"name": "cf_clearance", "value": "abc", "domain": ".upstream.test"}])
        page.context.cookies.assert_awaited_once_with("https://upstream.test")

    async def test_read_cookies_failure_is_session_read_error(self) -> None:
        page = MagicMock()
        page.context.cookies = AsyncMock(side_effect=RuntimeError("Target closed"))
        with self.assertRaises(SessionReadError):
            await self.manager.read_cookies(page, "https://upstream.test")

    async def test_close_page_swallows_errors(self) -> None:
        page = MagicMock()
        page.close = AsyncMock(side_effect=RuntimeError("already closed"))
        await self.manager.close_page(page)
        page.close.assert_awaited_once()

    async def test_launch_args(self) -> None:
        headless_args = self.manager._launch_args(True)
        interactive_args = self.manager._launch_args(False)
        self.assertIn("--disable-blink-features=AutomationControlled", headless_args)
        self.assertIn("--proxy-server=socks5://127.0.0.1:1080", headless_args)
        self.assertFalse(any(a.startswith("--remote-debugging-port") for a in headless_args))
        self.assertIn("--remote-debugging-port=9333", interactive_args)

    async def test_launch_reuses_connected_session(self) -> None:
        context = MagicMock()
        context.add_init_script = AsyncMock()
        session = BrowserSession(headless=True, engine=constants.ENGINE_CHROMIUM, context=context)
        with patch.object(self.manager, "_launch_chromium", AsyncMock(return_value=session)) as launch:
            first = await self.manager.launch(headless=True)
            second = await self.manager.launch(headless=True)
        self.assertIs(first, second)
        launch.assert_awaited_once_with(True)

    async def test_launch_relaunches_after_disconnect(self) -> None:
        sessions = [
            BrowserSession(headless=False, engine=constants.ENGINE_CHROMIUM, context=MagicMock(close=AsyncMock())),
            BrowserSession(headless=False, engine=constants.ENGINE_CHROMIUM, context=MagicMock(close=AsyncMock())),
        ]
        with patch.object(self.manager, "_launch_chromium", AsyncMock(side_effect=sessions)):
            first = await self.manager.launch(headless=False)
            first.closed = True
            self.assertIsNone(self.manager.get_session(headless=False))
            second = await self.manager.launch(headless=False)
        self.assertIs(second, sessions[1])
        self.assertIs(self.manager.get_session(headless=False), sessions[1])

    async def test_launch_failure_is_session_launch_error(self) -> None:
        with patch.object(self.manager, "_launch_chromium", AsyncMock(side_effect=RuntimeError("Executable doesn't exist"))):
            with self.assertRaises(SessionLaunchError):
                await self.manager.launch(headless=False)
        self.assertIsNone(self.manager.get_session(headless=False))

    async def test_camoufox_engine_only_for_headless(self) -> None:
        manager = BrowserManager(make_config(headless_engine=constants.ENGINE_CAMOUFOX))
        camoufox_session = BrowserSession(headless=True, engine=constants.ENGINE_CAMOUFOX, context=MagicMock())
        chromium_session = BrowserSession(headless=False, engine=constants.ENGINE_CHROMIUM, context=MagicMock())
        with patch.object(manager, "_launch_camoufox", AsyncMock(return_value=camoufox_session)) as camoufox, patch.object(
            manager, "_launch_chromium", AsyncMock(return_value=chromium_session)
        ) as chromium:
            self.assertIs(await manager.launch(headless=True), camoufox_session)
            self.assertIs(await manager.launch(headless=False), chromium_session)
        camoufox.assert_awaited_once()
        chromium.assert_awaited_once_with(False)

    async def test_shutdown_all_closes_everything(self) -> None:
        context = MagicMock(close=AsyncMock(side_effect=RuntimeError("gone")))
        browser = MagicMock(close=AsyncMock(), is_connected=MagicMock(return_value=True))
        owner = MagicMock(__aexit__=AsyncMock())
        session = BrowserSession(
            headless=True, engine=constants.ENGINE_CAMOUFOX, context=context, browser=browser, owner=owner
        )
        self.manager._sessions[True] = session
        playwright = MagicMock(stop=AsyncMock())
        self.manager._playwright = playwright

        await self.manager.shutdown_all()

        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        owner.__aexit__.assert_awaited_once_with(None, None, None)
        playwright.stop.assert_awaited_once()
        self.assertFalse(session.is_connected())
        self.assertIsNone(self.manager.get_session(headless=True))

    async def test_ws_endpoint_none_for_headless(self) -> None:
        session = BrowserSession(headless=True, engine=constants.ENGINE_CHROMIUM, context=MagicMock())
        self.assertIsNone(await self.manager.ws_endpoint(session))


if __name__ == "__main__":
    unittest.main()
