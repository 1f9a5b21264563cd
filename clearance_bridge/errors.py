"""
Exception types for ClearanceBridge.

Routes translate these into responses; nothing here is fatal to the process.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class TransportError(BridgeError):
    """The upstream could not be reached or did not answer in time."""


class RefreshError(BridgeError):
    """A credential refresh ran but did not produce a new credential."""


class NoCredentialFound(RefreshError):
    """The challenge cookie never appeared in the automated session."""

    def __init__(self, cookie_name: str, url: str):
        super().__init__(f"{cookie_name} not found after visiting {url}")
        self.cookie_name = cookie_name
        self.url = url


class NavigationTimeout(RefreshError):
    """An automated navigation did not reach its readiness state within its bound."""

    def __init__(self, url: str, timeout_ms: int):
        super().__init__(f"navigation to {url} timed out after {timeout_ms}ms")
        self.url = url
        self.timeout_ms = timeout_ms


class SessionReadError(BridgeError):
    """Reading cookies from a page of an automated session failed."""


class SessionLaunchError(BridgeError):
    """An automated browser session failed to start."""
