"""Builders and fakes for Lightning Network tests."""

import asyncio
import base64
import hashlib
import json
import time
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx

from lightgate.lightning.infrastructure import wire

NODE_PUBKEY = "03e7156ae33b0a208d0744199163177e909e80176e55d97a2f221ede0f934dd9ad"
OTHER_PUBKEY = "02" + "ab" * 32


def payment_hash(seed: str = "invoice") -> bytes:
    return hashlib.sha256(seed.encode()).digest()


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def invoice_json(
    seed: str = "invoice",
    *,
    value_msat: int = 1_000_000,
    settled: bool = False,
    creation_date: int | None = None,
    expiry: int = 3600,
    state: str | None = None,
    amt_paid_msat: int | None = None,
) -> dict[str, Any]:
    """Invoice as LND's REST API renders it (int64 as strings, bytes as base64)."""
    created = int(time.time()) if creation_date is None else creation_date
    data: dict[str, Any] = {
        "memo": f"memo {seed}",
        "r_hash": b64(payment_hash(seed)),
        "value_msat": str(value_msat),
        "settled": settled,
        "creation_date": str(created),
        "settle_date": str(created + 10) if settled else "0",
        "payment_request": f"lnbcrt10u1p{seed}",
        "expiry": str(expiry),
        "private": False,
    }
    if state is not None:
        data["state"] = state
    if amt_paid_msat is not None:
        data["amt_paid_msat"] = str(amt_paid_msat)
    return data


def stream_line(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode() + b"\n"


class MockGateway:
    """Stand-in for ``LndRestGateway`` recording state-changing calls."""

    def __init__(self):
        self.send_payment_sync = AsyncMock()
        self.open_channel_sync = AsyncMock(return_value={})
        self.pending_channels = AsyncMock(return_value=wire.PendingChannelsResponse())

    def pending_open_to(self, *pubkeys: str) -> None:
        self.pending_channels.return_value = wire.PendingChannelsResponse.model_validate(
            {
                "pending_open_channels": [
                    {"channel": {"remote_node_pub": pubkey}} for pubkey in pubkeys
                ]
            }
        )


class StreamFeed:
    """Response body for the subscription endpoint, fed line by line from a test."""

    def __init__(self):
        self._lines: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.started = asyncio.Event()
        self.closed = asyncio.Event()

    def send(self, payload: dict[str, Any] | bytes) -> None:
        self._lines.put_nowait(payload if isinstance(payload, bytes) else stream_line(payload))

    def end(self) -> None:
        self._lines.put_nowait(None)

    async def body(self):
        self.started.set()
        try:
            while True:
                line = await self._lines.get()
                if line is None:
                    return
                yield line
        finally:
            self.closed.set()


class Router:
    """``httpx.MockTransport`` handler dispatching on method and path."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]):
        self.routes[(method, path)] = handler

    def json(self, method: str, path: str, payload: Any, status_code: int = 200) -> None:
        self.add(method, path, lambda request: httpx.Response(status_code, json=payload))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"code": 5, "message": "Not Found"})
        return handler(request)

    def bodies(self, path: str) -> list[Any]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
