from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional, Sequence

from tiny_resilience.application.request_context import request_id_var
from tiny_resilience.domain.entries import HttpRequest
from tiny_resilience.domain.errors import FetchError, RetryBudgetExhausted, TerminalRequestError
from tiny_resilience.infrastructure.config import Settings, load_settings
from tiny_resilience.infrastructure.logging import configure_logging
from tiny_resilience.main import build_cache, build_fetcher
from tiny_resilience.transport.http.client import AiohttpTransport

_MISSING = object()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tiny-resilience")
    parser.add_argument("--backend", choices=("file", "sqlite", "memory"), default=None, help="cache backing store")
    parser.add_argument("--storage-path", default=None, help="directory holding the cache")
    parser.add_argument("--max-storage-bytes", type=int, default=None, help="cache byte budget")
    parser.add_argument("--max-retries", type=int, default=None, help="retries after the first attempt")
    parser.add_argument("--base-delay-ms", type=int, default=None, help="first backoff delay")
    parser.add_argument("--max-delay-ms", type=int, default=None, help="backoff delay cap")
    parser.add_argument("--base-url", default=None, help="prefix for relative request URLs")
    parser.add_argument("--timeout", type=float, default=None, help="per-attempt timeout in seconds")
    parser.add_argument("--request-id", default=None, help="value sent as X-Request-Id")

    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="fetch a URL with retries")
    fetch_parser.add_argument("url")
    fetch_parser.add_argument("--method", default="GET")
    fetch_parser.add_argument("--data", default=None, help="JSON request body")
    fetch_parser.add_argument(
        "--header",
        action="append",
        default=[],
        metavar="NAME:VALUE",
        help="extra request header (repeatable)",
    )
    fetch_parser.add_argument("--cache-key", default=None, help="store the result in the cache under this key")
    fetch_parser.add_argument("--text", action="store_true", help="treat the response body as plain text")

    get_parser = subparsers.add_parser("get", help="print a cached value")
    get_parser.add_argument("key")

    delete_parser = subparsers.add_parser("delete", help="remove a cached value")
    delete_parser.add_argument("key")

    subparsers.add_parser("clear", help="remove every cached value")
    subparsers.add_parser("stats", help="print cache statistics as json")

    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides = {
        "backend": args.backend,
        "storage_path": args.storage_path,
        "max_storage_bytes": args.max_storage_bytes,
        "max_retries": args.max_retries,
        "base_delay_ms": args.base_delay_ms,
        "max_delay_ms": args.max_delay_ms,
        "base_url": args.base_url,
        "timeout_seconds": args.timeout,
    }
    merged = load_settings().model_dump()
    merged.update({name: value for name, value in overrides.items() if value is not None})
    return Settings(**merged)


def _parse_headers(parser: argparse.ArgumentParser, raw_headers: List[str]) -> Dict[str, str]:
    headers = {}
    for raw in raw_headers:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            parser.error(f"fetch: header must look like NAME:VALUE, got {raw!r}")
        headers[name.strip()] = value.strip()
    return headers


def _parse_body(parser: argparse.ArgumentParser, raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        parser.error(f"fetch: --data must be JSON ({exc})")


def _print_value(value: Any) -> None:
    if isinstance(value, str):
        print(value)
    else:
        print(json.dumps(value, ensure_ascii=False))


async def _fetch(args: argparse.Namespace, parser: argparse.ArgumentParser, settings: Settings) -> int:
    request = HttpRequest(
        url=args.url,
        method=args.method.upper(),
        headers=_parse_headers(parser, args.header),
        json_body=_parse_body(parser, args.data),
        response_type="text" if args.text else "json",
    )

    async with AiohttpTransport(
        timeout_seconds=settings.timeout_seconds, log_requests=settings.log_requests
    ) as transport:
        fetcher = build_fetcher(settings, transport)
        try:
            value = await fetcher.execute(request)
        except TerminalRequestError as exc:
            print(f"terminal: {exc}", file=sys.stderr)
            return 2
        except RetryBudgetExhausted as exc:
            print(f"exhausted: {exc}", file=sys.stderr)
            return 2
        except FetchError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2

    if args.cache_key:
        cache = build_cache(settings)
        if not cache.set(args.cache_key, value):
            print(f"warning: result was not cached under {args.cache_key!r}", file=sys.stderr)

    _print_value(value)
    return 0


async def run(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    token = request_id_var.set(args.request_id) if args.request_id else None
    try:
        settings = _settings_from_args(args)

        if args.command == "fetch":
            return await _fetch(args, parser, settings)

        cache = build_cache(settings)

        if args.command == "get":
            value = cache.get(args.key, _MISSING)
            if value is _MISSING:
                return 1
            print(json.dumps(value, ensure_ascii=False))
            return 0

        if args.command == "delete":
            cache.remove(args.key)
            print("OK")
            return 0

        if args.command == "clear":
            cache.clear()
            print("OK")
            return 0

        if args.command == "stats":
            print(json.dumps(cache.stats()))
            return 0

        parser.error(f"unknown command: {args.command}")
        return 2
    except Exception as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        if token is not None:
            request_id_var.reset(token)


def main() -> None:
    try:
        settings = load_settings()
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    configure_logging(settings.log_level, settings.log_format)
    raise SystemExit(asyncio.run(run()))


if __name__ == "__main__":
    main()
