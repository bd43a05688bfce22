from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from tiny_resilience.domain.backoff import backoff_delay_ms
from tiny_resilience.domain.constraints import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    TERMINAL_STATUS_CODES,
)
from tiny_resilience.domain.entries import (
    ALLOWED_TRANSITIONS,
    AttemptOutcome,
    FetchState,
    HttpRequest,
    HttpResponse,
    RetryAttempt,
)
from tiny_resilience.domain.errors import (
    HttpStatusError,
    ResponseDecodeError,
    RetryBudgetExhausted,
    TerminalRequestError,
    TransportError,
)

from .ports import TransportPort
from .request_context import request_id_var

logger = logging.getLogger(__name__)

RETRY_ATTEMPT_HEADER = "X-Retry-Attempt"
REQUEST_ID_HEADER = "X-Request-Id"
DEFAULT_HEADERS = {"Content-Type": "application/json"}


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms <= 0:
            raise ValueError(f"base_delay_ms must be > 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms must be >= base_delay_ms, got {self.max_delay_ms} < {self.base_delay_ms}"
            )


@dataclass
class FetchResult:
    value: Any
    response: HttpResponse
    attempts: List[RetryAttempt] = field(default_factory=list)
    state: FetchState = FetchState.SUCCEEDED


class _Run:
    """Bookkeeping for one logical request."""

    def __init__(self, url: str):
        self.url = url
        self.state = FetchState.ATTEMPTING
        self.attempts: List[RetryAttempt] = []

    def move(self, new_state: FetchState) -> None:
        if new_state not in ALLOWED_TRANSITIONS.get(self.state, ()):
            raise RuntimeError(f"Illegal fetch transition {self.state.value} -> {new_state.value}")
        logger.debug("%s: %s -> %s", self.url, self.state.value, new_state.value)
        self.state = new_state


class ResilientFetcher:
    """Runs a request with exponential backoff, jitter and status-aware retry.

    Transport failures and non-terminal error statuses are retried up to
    ``policy.max_retries`` times. Statuses in ``TERMINAL_STATUS_CODES`` fail
    on the spot with ``TerminalRequestError``; a spent budget raises
    ``RetryBudgetExhausted`` carrying the last underlying failure.
    """

    def __init__(
        self,
        transport: TransportPort,
        policy: Optional[RetryPolicy] = None,
        *,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        base_url: str = "",
        default_headers: Optional[Mapping[str, str]] = None,
    ):
        self.transport = transport
        self.policy = policy or RetryPolicy()
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.base_url = base_url.rstrip("/")
        self.default_headers: Dict[str, str] = dict(DEFAULT_HEADERS if default_headers is None else default_headers)

    def resolve_url(self, url: str) -> str:
        if not self.base_url or "://" in url:
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    def _prepare(self, request: HttpRequest, attempt: int) -> HttpRequest:
        headers = dict(self.default_headers)
        request_id = request_id_var.get()
        if request_id != "-":
            headers[REQUEST_ID_HEADER] = request_id
        headers.update(request.headers)
        if attempt > 0:
            headers[RETRY_ATTEMPT_HEADER] = str(attempt)
        return replace(request, url=self.resolve_url(request.url), headers=headers)

    @staticmethod
    def _parse(request: HttpRequest, response: HttpResponse) -> Any:
        if request.response_type == "bytes":
            return response.body
        try:
            text = response.body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ResponseDecodeError(f"Response body is not UTF-8: {exc}") from exc
        if request.response_type == "text":
            return text
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ResponseDecodeError(f"Response body is not valid JSON: {exc}") from exc

    async def execute(self, request: HttpRequest) -> Any:
        result = await self.execute_detailed(request)
        return result.value

    async def execute_detailed(self, request: HttpRequest) -> FetchResult:
        run = _Run(self.resolve_url(request.url))
        delay_ms = 0.0
        attempt = 0

        while True:
            try:
                response = await self.transport.send(self._prepare(request, attempt))
            except TransportError as exc:
                last_error: Exception = exc
                status = None
            else:
                if response.ok:
                    try:
                        value = self._parse(request, response)
                    except ResponseDecodeError as exc:
                        run.attempts.append(
                            RetryAttempt(attempt, delay_ms, AttemptOutcome.TERMINAL_FAILURE, response.status)
                        )
                        run.move(FetchState.FAILED_TERMINAL)
                        exc.attempts = list(run.attempts)
                        raise
                    run.attempts.append(RetryAttempt(attempt, delay_ms, AttemptOutcome.SUCCESS, response.status))
                    run.move(FetchState.SUCCEEDED)
                    return FetchResult(value, response, run.attempts, run.state)

                if response.status in TERMINAL_STATUS_CODES:
                    run.attempts.append(
                        RetryAttempt(attempt, delay_ms, AttemptOutcome.TERMINAL_FAILURE, response.status)
                    )
                    run.move(FetchState.FAILED_TERMINAL)
                    logger.error(
                        "Request %s %s rejected with %d; not retrying",
                        request.method,
                        run.url,
                        response.status,
                        extra={"url": run.url, "status": response.status},
                    )
                    raise TerminalRequestError(response.status, response.reason, response.body, run.attempts)

                last_error = HttpStatusError(response.status, response.reason, response.body)
                status = response.status

            run.attempts.append(RetryAttempt(attempt, delay_ms, AttemptOutcome.RETRYABLE_FAILURE, status))

            if attempt >= self.policy.max_retries:
                run.move(FetchState.FAILED_EXHAUSTED)
                logger.warning(
                    "Request %s %s failed after %d attempts: %s",
                    request.method,
                    run.url,
                    len(run.attempts),
                    last_error,
                    extra={"url": run.url, "attempt": attempt, "status": status},
                )
                raise RetryBudgetExhausted(last_error, run.attempts) from last_error

            delay_ms = backoff_delay_ms(
                attempt, self.policy.base_delay_ms, self.policy.max_delay_ms, self._rng
            )
            run.move(FetchState.WAITING)
            logger.warning(
                "Request %s %s failed (%s); retry %d/%d in %.0fms",
                request.method,
                run.url,
                last_error,
                attempt + 1,
                self.policy.max_retries,
                delay_ms,
                extra={"url": run.url, "attempt": attempt + 1, "delay_ms": round(delay_ms, 1), "status": status},
            )
            await self._sleep(delay_ms / 1000)
            run.move(FetchState.ATTEMPTING)
            attempt += 1
