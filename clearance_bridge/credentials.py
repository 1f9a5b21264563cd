"""
Credential store for ClearanceBridge.

Holds the single cookie header that proves a solved challenge. Readers get an immutable
snapshot; writers replace the whole snapshot in one assignment, so a reader never observes
a half-written credential.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from . import constants


def _m():
    """Late import of main module so tests can patch main.X and it is reflected here."""
    from . import main
    return main


@dataclass(frozen=True)
class Credential:
    header: str = ""
    # Epoch milliseconds; 0 means "never captured" (empty or seeded from config)
    captured_at: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.header

    @property
    def updated_at(self) -> Optional[int]:
        return self.captured_at or None


def build_cookie_header(cookies: Iterable[dict]) -> str:
    """Join every cookie as `name=value` in the order given."""
    parts = []
    for cookie in cookies or []:
        name = str(cookie.get("name") or "")
        if not name:
            continue
        parts.append(f"{name}={cookie.get('value') or ''}")
    return "; ".join(parts)


def _now_ms() -> int:
    return int(time.time() * 1000)


class CredentialStore:
    """Process-wide holder of the current credential."""

    def __init__(
        self,
        seed_header: str = "",
        cookie_name: str = constants.CF_CLEARANCE_COOKIE,
        on_update=None,
    ):
        self.cookie_name = cookie_name
        self._credential = Credential(header=str(seed_header or "").strip())
        self._on_update = on_update

    def get(self) -> Credential:
        return self._credential

    def set(self, cookies: Iterable[dict]) -> bool:
        """
        Replace the credential from a browser cookie list.

        Returns False and leaves the store untouched unless the named challenge cookie is present.
        The header is built from the full cookie list, not just the named cookie.
        """
        cookies = list(cookies or [])
        named = None
        for cookie in cookies:
            if str(cookie.get("name") or "") == self.cookie_name:
                named = cookie
                break
        if named is None:
            return False

        header = build_cookie_header(cookies)
        if not header:
            return False

        previous = self._credential
        captured_at = max(_now_ms(), previous.captured_at)
        self._credential = Credential(header=header, captured_at=captured_at)

        stamp = datetime.fromtimestamp(captured_at / 1000, tz=timezone.utc).isoformat()
        _m().debug_print(
            f"✅ [cf] updated at {stamp} from domain={named.get('domain') or 'n/a'}"
        )

        if self._on_update is not None:
            try:
                self._on_update(self._credential)
            except Exception as e:
                _m().debug_print(f"⚠️ [cf] credential update hook failed: {e}")
        return True
