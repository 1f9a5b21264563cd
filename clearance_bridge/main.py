import builtins as _builtins
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from . import constants
from .browser_utils import normalize_path
from .config import get_config
from .errors import TransportError
from .state import ProxyContext, create_context
from .transport import target_path

DEBUG = constants.DEBUG
STATUS_MESSAGES = constants.STATUS_MESSAGES


def safe_print(*args, **kwargs) -> None:
    """
    Print without crashing on console encoding issues (e.g., GBK can't encode emoji).
    This must never raise, because it's used inside request handlers.
    """
    try:
        _builtins.print(*args, **kwargs)
    except UnicodeEncodeError:
        file = kwargs.get("file") or sys.stdout
        sep = kwargs.get("sep", " ")
        end = kwargs.get("end", "\n")
        flush = bool(kwargs.get("flush", False))

        try:
            text = sep.join(str(a) for a in args) + end
            encoding = getattr(file, "encoding", None) or getattr(sys.stdout, "encoding", None) or "utf-8"
            safe_text = text.encode(encoding, errors="backslashreplace").decode(encoding, errors="ignore")
            file.write(safe_text)
            if flush:
                try:
                    file.flush()
                except Exception:
                    pass
        except Exception:
            return


print = safe_print  # type: ignore[assignment]


def debug_print(*args, **kwargs):
    """Print debug messages only if DEBUG is True"""
    if DEBUG:
        print(*args, **kwargs)


def get_status_emoji(status_code: int) -> str:
    if 200 <= status_code < 300:
        return "✅"
    elif 300 <= status_code < 400:
        return "↪️"
    elif 400 <= status_code < 500:
        if status_code == 403:
            return "🚫"
        elif status_code == 429:
            return "⏱️"
        return "⚠️"
    elif 500 <= status_code < 600:
        return "❌"
    return "ℹ️"


def log_http_status(status_code: int, context: str = "") -> None:
    emoji = get_status_emoji(status_code)
    message = STATUS_MESSAGES.get(status_code, f"Unknown Status {status_code}")
    if context:
        debug_print(f"{emoji} HTTP {status_code}: {message} ({context})")
    else:
        debug_print(f"{emoji} HTTP {status_code}: {message}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests inject a prepared context; only build (and later tear down) one if absent.
    ctx: Optional[ProxyContext] = getattr(app.state, "ctx", None)
    owns_context = ctx is None
    if owns_context:
        ctx = create_context(get_config())
        app.state.ctx = ctx
        print(f"🌐 upstream: {ctx.config['upstream']}")
        if not ctx.store.get().is_empty:
            debug_print("🍪 Seed credential loaded from configuration.")
    try:
        yield
    finally:
        if owns_context:
            debug_print("🛑 Shutting down, closing browsers...")
            await ctx.aclose()
            app.state.ctx = None


app = FastAPI(lifespan=lifespan)


def get_context(request: Request) -> ProxyContext:
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="Bridge is not initialised")
    return ctx


def _credential_status(ctx: ProxyContext) -> dict:
    credential = ctx.store.get()
    return {
        "hasCookie": not credential.is_empty,
        "updatedAt": credential.updated_at,
    }


@app.get("/status")
async def status(ctx: ProxyContext = Depends(get_context)):
    return _credential_status(ctx)


@app.get("/manual/refresh")
async def manual_refresh(path: Optional[str] = None, ctx: ProxyContext = Depends(get_context)):
    """Open (or reuse) the headful browser, start polling and point it at `path`."""
    try:
        session = await ctx.poller.start()
        page = await ctx.browsers.new_page(session)
        await ctx.browsers.navigate(
            page,
            f"{ctx.config['upstream']}{normalize_path(path)}",
            wait_until=constants.PAGE_READY_STATE,
            timeout_ms=int(ctx.config.get("navigation_timeout_ms") or constants.DEFAULT_NAVIGATION_TIMEOUT_MS),
        )
        ws_endpoint = await ctx.browsers.ws_endpoint(session)
        port = int(ctx.config.get("debug_port") or constants.DEFAULT_DEBUG_PORT)
        return {
            "wsEndpoint": ws_endpoint,
            "tip": constants.MANUAL_TIP_TEMPLATE.format(port=port),
        }
    except Exception as e:
        debug_print(f"❌ [manual] refresh failed: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})


@app.get("/manual/pull")
async def manual_pull(ctx: ProxyContext = Depends(get_context)):
    """Read cookies from the headful browser now, without waiting for the next poll tick."""
    try:
        ok = await ctx.poller.pull()
    except Exception as e:
        debug_print(f"❌ [manual] pull failed: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})
    return {"success": ok, **_credential_status(ctx)}


def _raw_request_path(request: Request) -> str:
    """The path exactly as the client sent it, percent-escapes intact."""
    raw_path = request.scope.get("raw_path")
    if not raw_path:
        return request.url.path
    # Some ASGI servers leave the query string on raw_path
    return raw_path.split(b"?", 1)[0].decode("latin-1")


@app.get("/proxy/{rest:path}")
async def proxy(request: Request, rest: str, ctx: ProxyContext = Depends(get_context)):  # noqa: ARG001
    path = target_path(_raw_request_path(request), request.url.query)
    try:
        upstream = await ctx.proxy.handle(path)
    except TransportError as e:
        debug_print(f"❌ [proxy] upstream unreachable for {path}: {e}")
        return PlainTextResponse(constants.PROXY_ERROR_BODY, status_code=500)
    except Exception as e:
        debug_print(f"❌ [proxy] unexpected error for {path}: {type(e).__name__}: {e}")
        return PlainTextResponse(constants.PROXY_ERROR_BODY, status_code=500)
    # Pass the upstream content-type through untouched (no charset appended)
    headers = {"content-type": upstream.content_type} if upstream.content_type else None
    return Response(content=upstream.content, status_code=upstream.status_code, headers=headers)


def run() -> None:
    # Avoid crashes on consoles with non-UTF8 code pages (e.g., GBK) when printing emojis.
    try:
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")
    except Exception:
        pass

    config = get_config()
    port = int(config.get("port") or constants.PORT)
    print("=" * 60)
    print("🚀 ClearanceBridge Server Starting...")
    print("=" * 60)
    print(f"📍 Status: http://localhost:{port}/status")
    print(f"🔁 Proxy: http://localhost:{port}/proxy/")
    print(f"🖐️ Manual refresh: http://localhost:{port}/manual/refresh")
    print("=" * 60)
    # uvicorn turns SIGINT/SIGTERM into a lifespan shutdown, which closes both browsers.
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    run()
