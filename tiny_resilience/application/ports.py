from __future__ import annotations

from typing import Optional, Protocol

from tiny_resilience.domain.entries import HttpRequest, HttpResponse


class BackingStorePort(Protocol):
    def read(self, key: str) -> Optional[bytes]: ...

    def write(self, key: str, data: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


class TransportPort(Protocol):
    async def send(self, request: HttpRequest) -> HttpResponse: ...
