"""
Async and browser utility functions for ClearanceBridge.

Handles:
- Single-flight sharing of one in-flight coroutine per key
- Async task lifecycle helpers
- Best-effort page close
- Upstream path normalisation
"""

import asyncio
from typing import Awaitable, Callable, Dict, Hashable, Optional
from urllib.parse import urlsplit


def _m():
    """Late import of main module so tests can patch main.X and it is reflected here."""
    from . import main
    return main


def normalize_path(value: object) -> str:
    """
    Reduce a user-supplied path (or full URL) to an upstream path + query.

    "" -> "/", "https://host/a?b=1" -> "/a?b=1", "a" -> "/a".
    """
    path = str(value or "").strip()
    if not path:
        return "/"
    if path.startswith("http"):
        try:
            parts = urlsplit(path)
        except ValueError:
            return "/"
        if not parts.scheme or not parts.netloc:
            return "/"
        result = parts.path or "/"
        if parts.query:
            result += f"?{parts.query}"
        return result
    return path if path.startswith("/") else f"/{path}"


class SingleFlight:
    """
    At most one outstanding task per key.

    The first caller for a key starts the work; later callers await the same task and
    observe the same result or exception. The slot is cleared as soon as the task finishes,
    so the next call after completion starts fresh.
    """

    def __init__(self) -> None:
        self._inflight: Dict[Hashable, "asyncio.Task"] = {}

    def inflight(self, key: Hashable) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def do(self, key: Hashable, factory: Callable[[], Awaitable]):
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task

            def _clear(done: "asyncio.Task", key=key) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]
                _consume_background_task_exception(done)

            task.add_done_callback(_clear)
        # A cancelled waiter must not cancel the shared work for everyone else.
        return await asyncio.shield(task)

    async def cancel_all(self) -> None:
        tasks = list(self._inflight.values())
        self._inflight.clear()
        for task in tasks:
            await _cancel_background_task(task)


def _consume_background_task_exception(task: "asyncio.Task") -> None:
    try:
        task.exception()
    except asyncio.CancelledError:
        pass
    except Exception:
        pass


async def _cancel_background_task(task: Optional["asyncio.Task"], *, timeout_seconds: float = 1.0) -> None:
    if task is None:
        return
    if task.done():
        _consume_background_task_exception(task)
        return

    task.cancel()
    try:
        await asyncio.wait_for(task, timeout=float(timeout_seconds))
    except asyncio.CancelledError:
        # Re-raise only if *we* are being cancelled, not the task we just cancelled.
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
    except Exception:
        pass

    if task.done():
        _consume_background_task_exception(task)
    else:
        try:
            task.add_done_callback(_consume_background_task_exception)
        except Exception:
            pass


async def safe_close_page(page) -> None:
    """Close a page, swallowing errors (the page or its browser may already be gone)."""
    if page is None:
        return
    try:
        await page.close()
    except Exception as e:
        _m().debug_print(f"⚠️ page close failed (ignored): {e}")
