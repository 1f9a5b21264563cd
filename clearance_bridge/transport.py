"""
Upstream transport for ClearanceBridge.

Forwards a client path to the single configured upstream with the current credential,
refreshing the credential and retrying exactly once when the answer looks like a challenge.
"""

from dataclasses import dataclass
from typing import Optional, Union

import httpx

from . import constants
from .challenge import should_refresh
from .credentials import CredentialStore
from .errors import TransportError
from .refresh import RefreshCoordinator


def _m():
    """Late import of main module so tests can patch main.X and it is reflected here."""
    from . import main
    return main


@dataclass
class UpstreamResponse:
    status_code: int
    # Decoded text for textual content types (used for challenge detection), raw bytes otherwise
    body: Union[str, bytes]
    content_type: Optional[str] = None
    # Exactly what the upstream sent; this is what goes back to the client
    content: bytes = b""


def target_path(request_path: str, query: str = "") -> str:
    """Map a client path under /proxy to the upstream path (query string preserved)."""
    path = str(request_path or "")
    if path.startswith(constants.PROXY_PREFIX):
        path = path[len(constants.PROXY_PREFIX):]
    if not path:
        path = "/"
    if not path.startswith("/"):
        path = f"/{path}"
    if query:
        path = f"{path}?{query}"
    return path


def _is_textual(content_type: Optional[str]) -> bool:
    if not content_type:
        return True
    lowered = content_type.lower()
    return any(marker in lowered for marker in constants.TEXTUAL_CONTENT_TYPE_MARKERS)


class ForwardingProxy:
    def __init__(
        self,
        config: dict,
        store: CredentialStore,
        refresher: RefreshCoordinator,
        client: httpx.AsyncClient,
    ):
        self.config = config
        self.store = store
        self.refresher = refresher
        self.client = client

    def _headers(self) -> dict:
        headers = {
            "user-agent": str(self.config.get("user_agent") or constants.DEFAULT_USER_AGENT),
            "accept-language": str(self.config.get("accept_language") or constants.DEFAULT_ACCEPT_LANGUAGE),
        }
        credential = self.store.get()
        if not credential.is_empty:
            headers["cookie"] = credential.header
        return headers

    async def fetch(self, url: str) -> UpstreamResponse:
        """GET `url`; any HTTP status resolves normally, only transport failures raise."""
        timeout = int(self.config.get("upstream_timeout_ms") or constants.DEFAULT_UPSTREAM_TIMEOUT_MS) / 1000
        try:
            response = await self.client.get(url, headers=self._headers(), timeout=timeout)
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        content_type = response.headers.get("content-type")
        body: Union[str, bytes] = response.text if _is_textual(content_type) else response.content
        _m().log_http_status(response.status_code, url)
        return UpstreamResponse(
            status_code=response.status_code,
            body=body,
            content_type=content_type,
            content=response.content,
        )

    async def handle(self, path: str) -> UpstreamResponse:
        """
        Forward `path` (already mapped by `target_path`) upstream.

        At most two upstream fetches: the first, and one retry after a refresh attempt.
        Raises TransportError if either fetch cannot reach the upstream.
        """
        url = f"{self.config['upstream']}{path}"
        first = await self.fetch(url)
        if not should_refresh(first.status_code, first.body):
            return first

        _m().debug_print(f"🛡️ [auto] challenge detected (HTTP {first.status_code}), refreshing credential...")
        try:
            await self.refresher.refresh(interactive=False, path=path)
        except Exception as e:
            _m().debug_print(f"⚠️ [auto] refresh failed: {e}")
        return await self.fetch(url)
