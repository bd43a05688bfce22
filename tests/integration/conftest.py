import pytest_asyncio
from aiohttp import web


async def _start_app(app: web.Application) -> tuple[web.AppRunner, int]:
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()

    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()

    if site._server is None or not site._server.sockets:
        await runner.cleanup()
        raise RuntimeError("test server did not start")

    port = site._server.sockets[0].getsockname()[1]
    return runner, port


class MediaApi:
    """Small stand-in for the upstream API with scriptable failures."""

    def __init__(self):
        self.calls = {}
        self.seen_headers = []
        self.flaky_failures = 2

    def _count(self, name: str) -> int:
        self.calls[name] = self.calls.get(name, 0) + 1
        return self.calls[name]

    async def hot_content(self, request: web.Request) -> web.Response:
        self._count("hot")
        self.seen_headers.append(dict(request.headers))
        return web.json_response({"items": [{"id": 1, "title": "Pilot"}]})

    async def flaky(self, request: web.Request) -> web.Response:
        n = self._count("flaky")
        self.seen_headers.append(dict(request.headers))
        if n <= self.flaky_failures:
            return web.json_response({"error": "busy"}, status=503)
        return web.json_response({"attempt": n})

    async def missing(self, request: web.Request) -> web.Response:
        self._count("missing")
        return web.json_response({"error": "not found"}, status=404)

    async def broken(self, request: web.Request) -> web.Response:
        self._count("broken")
        return web.json_response({"error": "boom"}, status=500)

    async def echo(self, request: web.Request) -> web.Response:
        body = await request.json()
        return web.json_response({"method": request.method, "body": body, "q": request.query.get("q")})

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/hot-content", self.hot_content)
        app.router.add_get("/api/flaky", self.flaky)
        app.router.add_get("/api/missing", self.missing)
        app.router.add_get("/api/broken", self.broken)
        app.router.add_post("/api/echo", self.echo)
        return app


@pytest_asyncio.fixture
async def media_api():
    api = MediaApi()
    runner, port = await _start_app(api.app())
    api.base_url = f"http://127.0.0.1:{port}/api"
    try:
        yield api
    finally:
        await runner.cleanup()
