"""
Automated browser sessions for ClearanceBridge.

Owns at most two long-lived sessions: a headless one used for automatic refreshes and a
headful one (Chrome remote debugging enabled) that a human drives to solve a challenge
by hand. Both are Playwright contexts; the headless one may be Camoufox instead of Chromium.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from . import constants
from .browser_utils import safe_close_page
from .errors import NavigationTimeout, SessionLaunchError, SessionReadError


def _m():
    """Late import of main module so tests can patch main.X and it is reflected here."""
    from . import main
    return main


@dataclass
class BrowserSession:
    headless: bool
    engine: str
    context: Any
    browser: Any = None
    # Async context manager that owns the browser (Camoufox only)
    owner: Any = None
    debug_port: Optional[int] = None
    closed: bool = field(default=False)

    def is_connected(self) -> bool:
        if self.closed:
            return False
        if self.browser is not None:
            try:
                return bool(self.browser.is_connected())
            except Exception:
                return False
        return True


class BrowserManager:
    """Launches, reuses and tears down the automated sessions."""

    def __init__(self, config: dict):
        self.config = config
        self._playwright = None
        self._sessions: dict[bool, BrowserSession] = {}
        self._launch_lock = asyncio.Lock()

    def get_session(self, headless: bool) -> Optional[BrowserSession]:
        """Return the connected session of the requested kind, if any."""
        session = self._sessions.get(bool(headless))
        if session is not None and session.is_connected():
            return session
        return None

    def _launch_args(self, headless: bool) -> list[str]:
        args = list(constants.COMMON_BROWSER_ARGS)
        args.extend(str(a) for a in (self.config.get("extra_args") or []))
        if not headless:
            args.append(f"--remote-debugging-port={int(self.config.get('debug_port') or constants.DEFAULT_DEBUG_PORT)}")
        return args

    def _extra_headers(self) -> dict:
        return {"accept-language": str(self.config.get("accept_language") or constants.DEFAULT_ACCEPT_LANGUAGE)}

    async def launch(self, headless: bool = True) -> BrowserSession:
        headless = bool(headless)
        async with self._launch_lock:
            existing = self._sessions.get(headless)
            if existing is not None and existing.is_connected():
                return existing
            if existing is not None:
                await self.shutdown(existing)

            use_camoufox = headless and self.config.get("headless_engine") == constants.ENGINE_CAMOUFOX
            kind = "headless" if headless else "interactive"
            _m().debug_print(
                f"🚀 Launching {kind} browser ({constants.ENGINE_CAMOUFOX if use_camoufox else constants.ENGINE_CHROMIUM})..."
            )
            try:
                if use_camoufox:
                    launch = self._launch_camoufox()
                else:
                    launch = self._launch_chromium(headless)
                session = await asyncio.wait_for(launch, timeout=constants.BROWSER_LAUNCH_TIMEOUT_SECONDS)
            except Exception as e:
                _m().debug_print(f"❌ {kind} browser launch failed ({type(e).__name__}): {e}")
                raise SessionLaunchError(f"{kind} browser launch failed: {e}") from e

            self._sessions[headless] = session
            return session

    async def _ensure_playwright(self):
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return self._playwright

    async def _launch_chromium(self, headless: bool) -> BrowserSession:
        pw = await self._ensure_playwright()
        # Persistent context: pages a human opens over remote debugging share our cookie jar.
        context = await pw.chromium.launch_persistent_context(
            user_data_dir="",
            headless=headless,
            executable_path=self.config.get("executable_path") or None,
            args=self._launch_args(headless),
            ignore_default_args=list(constants.IGNORED_DEFAULT_ARGS),
            user_agent=str(self.config.get("user_agent") or constants.DEFAULT_USER_AGENT),
            viewport=dict(constants.VIEWPORT),
            extra_http_headers=self._extra_headers(),
        )
        session = BrowserSession(
            headless=headless,
            engine=constants.ENGINE_CHROMIUM,
            context=context,
            debug_port=None if headless else int(self.config.get("debug_port") or constants.DEFAULT_DEBUG_PORT),
        )
        await self._prepare_context(session)
        return session

    async def _launch_camoufox(self) -> BrowserSession:
        from camoufox.async_api import AsyncCamoufox

        owner = AsyncCamoufox(headless=True, main_world_eval=True)
        browser = await owner.__aenter__()
        try:
            context = await browser.new_context(
                user_agent=str(self.config.get("user_agent") or constants.DEFAULT_USER_AGENT),
                viewport=dict(constants.VIEWPORT),
                extra_http_headers=self._extra_headers(),
            )
        except Exception:
            try:
                await owner.__aexit__(None, None, None)
            except Exception:
                pass
            raise
        session = BrowserSession(
            headless=True,
            engine=constants.ENGINE_CAMOUFOX,
            context=context,
            browser=browser,
            owner=owner,
        )
        await self._prepare_context(session)
        return session

    async def _prepare_context(self, session: BrowserSession) -> None:
        def _on_close(*_args) -> None:
            session.closed = True

        try:
            session.context.on("close", _on_close)
        except Exception:
            pass
        try:
            await session.context.add_init_script(constants.STEALTH_INIT_SCRIPT)
        except Exception as e:
            _m().debug_print(f"⚠️ stealth init script not applied: {e}")

    async def new_page(self, session: BrowserSession):
        page = await session.context.new_page()
        try:
            await page.set_viewport_size(dict(constants.VIEWPORT))
            await page.set_extra_http_headers(self._extra_headers())
        except Exception:
            await safe_close_page(page)
            raise
        return page

    async def navigate(
        self,
        page,
        url: str,
        wait_until: str = constants.PAGE_READY_STATE,
        timeout_ms: int = constants.DEFAULT_NAVIGATION_TIMEOUT_MS,
    ) -> None:
        try:
            await page.goto(url, wait_until=wait_until, timeout=int(timeout_ms))
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(url, int(timeout_ms)) from e

    async def read_cookies(self, page, url: str) -> list[dict]:
        try:
            cookies = await page.context.cookies(url)
        except Exception as e:
            raise SessionReadError(f"cookie read failed: {e}") from e
        return [
            {
                "name": str(c.get("name") or ""),
                "value": str(c.get("value") or ""),
                "domain": str(c.get("domain") or ""),
            }
            for c in cookies or []
        ]

    async def list_pages(self, session: BrowserSession) -> list:
        try:
            return list(session.context.pages)
        except Exception:
            return []

    async def close_page(self, page) -> None:
        await safe_close_page(page)

    async def ws_endpoint(self, session: BrowserSession) -> Optional[str]:
        """Read the DevTools websocket URL of the interactive browser, or None."""
        if session.debug_port is None:
            return None
        url = f"http://127.0.0.1:{session.debug_port}{constants.DEVTOOLS_VERSION_PATH}"
        try:
            async with httpx.AsyncClient(timeout=constants.DEVTOOLS_VERSION_TIMEOUT_SECONDS) as client:
                response = await client.get(url)
            data = response.json()
        except Exception as e:
            _m().debug_print(f"⚠️ DevTools endpoint unavailable at {url}: {e}")
            return None
        if isinstance(data, dict):
            value = data.get("webSocketDebuggerUrl")
            return str(value) if value else None
        return None

    async def shutdown(self, session: Optional[BrowserSession]) -> None:
        """Best-effort close of a session and everything it owns."""
        if session is None:
            return
        session.closed = True
        if self._sessions.get(session.headless) is session:
            del self._sessions[session.headless]
        try:
            await session.context.close()
        except Exception:
            pass
        if session.browser is not None:
            try:
                await session.browser.close()
            except Exception:
                pass
        if session.owner is not None:
            try:
                await session.owner.__aexit__(None, None, None)
            except Exception:
                pass

    async def shutdown_all(self) -> None:
        for session in list(self._sessions.values()):
            kind = "headless" if session.headless else "interactive"
            _m().debug_print(f"🛑 Closing {kind} browser...")
            await self.shutdown(session)
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception:
                pass
            self._playwright = None
