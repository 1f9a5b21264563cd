"""
Process-lifetime state for ClearanceBridge.

Everything that used to be module-level mutable state (credential, browser sessions,
poll schedule, HTTP client) hangs off one ProxyContext, built at startup and torn down
at shutdown.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from . import config as _config_module
from .browser import BrowserManager
from .credentials import Credential, CredentialStore
from .manual import ManualSessionPoller
from .refresh import RefreshCoordinator
from .transport import ForwardingProxy


def _m():
    """Late import of main module so tests can patch main.X and it is reflected here."""
    from . import main
    return main


@dataclass
class ProxyContext:
    config: dict
    store: CredentialStore
    http_client: httpx.AsyncClient
    browsers: BrowserManager
    refresher: RefreshCoordinator
    poller: ManualSessionPoller
    proxy: ForwardingProxy

    async def aclose(self) -> None:
        """Best-effort teardown; every step runs even if an earlier one fails."""
        try:
            await self.poller.stop()
        except Exception as e:
            _m().debug_print(f"⚠️ Error stopping manual poller: {e}")
        try:
            await self.refresher.aclose()
        except Exception as e:
            _m().debug_print(f"⚠️ Error cancelling refresh: {e}")
        try:
            await self.browsers.shutdown_all()
        except Exception as e:
            _m().debug_print(f"⚠️ Error closing browsers: {e}")
        try:
            await self.http_client.aclose()
        except Exception as e:
            _m().debug_print(f"⚠️ Error closing HTTP client: {e}")


def _persist_hook(config: dict):
    if not config.get("persist_credential"):
        return None

    def _persist(credential: Credential) -> None:
        _config_module.persist_credential(credential.header)

    return _persist


def create_context(
    config: dict,
    *,
    browsers: Optional[BrowserManager] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ProxyContext:
    """Wire up the collaborators. `browsers`/`http_client` are injectable for tests."""
    seed = str(config.get("seed_credential") or "").strip()
    if not seed and config.get("persist_credential"):
        seed = str(config.get("credential") or "").strip()

    store = CredentialStore(seed_header=seed, on_update=_persist_hook(config))
    if http_client is None:
        http_client = httpx.AsyncClient(follow_redirects=True)
    if browsers is None:
        browsers = BrowserManager(config)
    refresher = RefreshCoordinator(config, store, browsers)
    poller = ManualSessionPoller(config, store, browsers)
    proxy = ForwardingProxy(config, store, refresher, http_client)
    return ProxyContext(
        config=config,
        store=store,
        http_client=http_client,
        browsers=browsers,
        refresher=refresher,
        poller=poller,
        proxy=proxy,
    )
