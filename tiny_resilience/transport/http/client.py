from __future__ import annotations

import asyncio
import logging
import time
from types import SimpleNamespace
from typing import Optional

import aiohttp

from tiny_resilience.domain.entries import HttpRequest, HttpResponse
from tiny_resilience.domain.errors import TransportError

logger = logging.getLogger(__name__)


async def _on_request_start(session, ctx: SimpleNamespace, params: aiohttp.TraceRequestStartParams) -> None:
    ctx.start = time.monotonic()
    logger.debug("-> %s %s", params.method, params.url)


async def _on_request_end(session, ctx: SimpleNamespace, params: aiohttp.TraceRequestEndParams) -> None:
    elapsed_ms = (time.monotonic() - getattr(ctx, "start", time.monotonic())) * 1000
    logger.debug(
        "<- %s %s %d (%.2fms)",
        params.method,
        params.url,
        params.response.status,
        elapsed_ms,
        extra={"url": str(params.url), "status": params.response.status},
    )


def build_trace_config() -> aiohttp.TraceConfig:
    trace_config = aiohttp.TraceConfig()
    trace_config.on_request_start.append(_on_request_start)
    trace_config.on_request_end.append(_on_request_end)
    return trace_config


class AiohttpTransport:
    """Sends ``HttpRequest``s through an ``aiohttp.ClientSession``.

    Connection failures, timeouts and broken payloads are raised as
    ``TransportError``; any HTTP status, error or not, comes back as an
    ``HttpResponse``. The session is created lazily unless one is passed in,
    in which case the caller owns it.
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        *,
        timeout_seconds: float = 30.0,
        log_requests: bool = False,
    ):
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._log_requests = log_requests

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            trace_configs = [build_trace_config()] if self._log_requests else None
            self._session = aiohttp.ClientSession(timeout=self._timeout, trace_configs=trace_configs)
            self._owns_session = True
        return self._session

    async def send(self, request: HttpRequest) -> HttpResponse:
        session = self._get_session()
        try:
            async with session.request(
                request.method,
                request.url,
                headers=request.headers or None,
                params=request.params or None,
                json=request.json_body if request.data is None else None,
                data=request.data,
            ) as resp:
                body = await resp.read()
                return HttpResponse(
                    status=resp.status,
                    reason=resp.reason or "",
                    headers=dict(resp.headers),
                    body=body,
                )
        except asyncio.TimeoutError as exc:
            raise TransportError(f"{request.method} {request.url} timed out") from exc
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc}") from exc

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "AiohttpTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
