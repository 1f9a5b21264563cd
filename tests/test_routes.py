import unittest

import httpx

from clearance_bridge.manual import PollerState
from tests._bridge_test_utils import (
    UPSTREAM,
    BaseBridgeTest,
    FakeBrowserManager,
)

LEADERBOARD_HTML = "<html><body><table id='leaderboard'><tr><td>NA</td></tr></table></body></html>"


class TestProxyRoute(BaseBridgeTest):
    async def test_empty_store_403_then_200_refreshes_once(self) -> None:
        def _upstream(request: httpx.Request) -> httpx.Response:
            if len(self.upstream_requests) == 1:
                return httpx.Response(403, text="Forbidden")
            return httpx.Response(200, text=LEADERBOARD_HTML, headers={"content-type": "text/html; charset=utf-8"})

        ctx = self.build_context(_upstream)
        client = await self.app_client()

        response = await client.get("/proxy/leaderboard?region=NA")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, LEADERBOARD_HTML)
        self.assertTrue(response.headers["content-type"].startswith("text/html"))
        self.assertEqual(self.browsers.headless_launches, 1)
        self.assertEqual(self.browsers.navigations, [f"{UPSTREAM}/leaderboard?region=NA"])
        self.assertFalse(ctx.store.get().is_empty)
        self.assertEqual([str(r.url) for r in self.upstream_requests], [f"{UPSTREAM}/leaderboard?region=NA"] * 2)
        self.assertEqual(self.upstream_requests[1].headers["cookie"], ctx.store.get().header)

    async def test_valid_credential_and_200_fetches_once(self) -> None:
        ctx = self.build_context(
            lambda request: httpx.Response(200, text="<html>anything</html>"),
            seed_credential="cf_clearance=valid",
        )
        client = await self.app_client()

        response = await client.get("/proxy/anything")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, "<html>anything</html>")
        self.assertEqual(self.browsers.headless_launches, 0)
        self.assertEqual(len(self.upstream_requests), 1)
        self.assertEqual(self.browsers.launch_calls, [])

    async def test_upstream_status_is_passed_through(self) -> None:
        self.build_context(lambda request: httpx.Response(404, text="not here"))
        client = await self.app_client()
        response = await client.get("/proxy/missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.text, "not here")

    async def test_non_utf8_body_is_returned_byte_for_byte(self) -> None:
        latin1 = "<html>café</html>".encode("iso-8859-1")
        content_type = "text/html; charset=iso-8859-1"
        self.build_context(
            lambda request: httpx.Response(200, content=latin1, headers={"content-type": content_type}),
            seed_credential="cf_clearance=valid",
        )
        client = await self.app_client()

        response = await client.get("/proxy/latin")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, latin1)
        self.assertEqual(response.headers["content-type"], content_type)
        self.assertEqual(response.text, "<html>café</html>")

    async def test_percent_encoded_path_is_forwarded_as_sent(self) -> None:
        self.build_context(lambda request: httpx.Response(200, text="ok"), seed_credential="cf_clearance=valid")
        client = await self.app_client()

        response = await client.get("/proxy/u/a%2Fb%20c?q=x%26y")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(self.upstream_requests), 1)
        self.assertEqual(self.upstream_requests[0].url.raw_path, b"/u/a%2Fb%20c?q=x%26y")

    async def test_transport_failure_returns_generic_500(self) -> None:
        def _timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        self.build_context(_timeout)
        client = await self.app_client()
        response = await client.get("/proxy/slow")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.text, "proxy error")


class TestStatusRoute(BaseBridgeTest):
    async def test_status_empty(self) -> None:
        self.build_context(lambda request: httpx.Response(200))
        client = await self.app_client()
        response = await client.get("/status")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"hasCookie": False, "updatedAt": None})

    async def test_status_after_capture(self) -> None:
        ctx = self.build_context(lambda request: httpx.Response(200))
        await ctx.refresher.refresh()
        client = await self.app_client()
        data = (await client.get("/status")).json()
        self.assertTrue(data["hasCookie"])
        self.assertEqual(data["updatedAt"], ctx.store.get().captured_at)

    async def test_status_without_context_is_503(self) -> None:
        transport = httpx.ASGITransport(app=self.main.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/status")
        self.assertEqual(response.status_code, 503)


class TestManualRoutes(BaseBridgeTest):
    async def test_manual_refresh_opens_page_and_starts_polling(self) -> None:
        browsers = FakeBrowserManager()
        ctx = self.build_context(lambda request: httpx.Response(200), browsers=browsers, manual_poll_interval_ms=60000)
        client = await self.app_client()

        response = await client.get("/manual/refresh", params={"path": "https://mapleranks.com/u/hero"})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["wsEndpoint"], "ws://127.0.0.1:9223/devtools/browser/fake")
        self.assertIn("9223", data["tip"])
        self.assertEqual(browsers.launch_calls, [False])
        self.assertEqual(browsers.navigations, [f"{UPSTREAM}/u/hero"])
        self.assertIs(ctx.poller.state, PollerState.POLLING)

    async def test_manual_refresh_twice_keeps_one_schedule(self) -> None:
        ctx = self.build_context(lambda request: httpx.Response(200), browsers=FakeBrowserManager(), manual_poll_interval_ms=60000)
        client = await self.app_client()
        await client.get("/manual/refresh")
        first = ctx.poller._task
        await client.get("/manual/refresh")
        self.assertTrue(first.done())
        self.assertFalse(ctx.poller._task.done())
        self.assertEqual(self.browsers.navigations, [f"{UPSTREAM}/", f"{UPSTREAM}/"])

    async def test_manual_refresh_launch_failure_is_500(self) -> None:
        browsers = FakeBrowserManager(launch_error=RuntimeError("no display"))
        ctx = self.build_context(lambda request: httpx.Response(200), browsers=browsers)
        client = await self.app_client()
        response = await client.get("/manual/refresh")
        self.assertEqual(response.status_code, 500)
        self.assertIn("no display", response.json()["error"])
        self.assertIs(ctx.poller.state, PollerState.IDLE)

    async def test_manual_pull_reads_interactive_session(self) -> None:
        browsers = FakeBrowserManager()
        ctx = self.build_context(lambda request: httpx.Response(200), browsers=browsers)
        client = await self.app_client()

        data = (await client.get("/manual/pull")).json()
        self.assertEqual(data, {"success": False, "hasCookie": False, "updatedAt": None})

        await client.get("/manual/refresh")
        await ctx.poller.stop()
        browsers.sessions[False].jar = [{"name": "cf_clearance", "value": "by-hand", "domain": ".upstream.test"}]

        data = (await client.get("/manual/pull")).json()
        self.assertTrue(data["success"])
        self.assertTrue(data["hasCookie"])
        self.assertEqual(data["updatedAt"], ctx.store.get().captured_at)
        self.assertEqual(ctx.store.get().header, "cf_clearance=by-hand")


if __name__ == "__main__":
    unittest.main()
