"""Shared test doubles for transport and engine tests."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from pathlib import Path
from typing import Any

from lspbridge.errors import TransportClosedError
from lspbridge.transport.framing import read_message

STUB_SERVER = Path(__file__).parent / "fixtures" / "stub_server.py"


def make_reader(data: bytes = b"", *, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


class FakeWriter:
    """Collects bytes written by the code under test."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def drain(self) -> None:
        if self.closed:
            raise ConnectionResetError("Connection lost")

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed

    async def frames(self) -> list[dict[str, Any]]:
        """Decode every complete frame written so far."""
        reader = make_reader(bytes(self.buffer))
        frames = []
        while (msg := await read_message(reader)) is not None:
            frames.append(msg)
        return frames


async def wait_until(predicate: Callable[[], Any], timeout: float = 5.0) -> None:
    """Poll `predicate` until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise TimeoutError("condition not met")
        await asyncio.sleep(0.01)


async def wait_for_frames(writer: FakeWriter, count: int, timeout: float = 5.0) -> list[dict[str, Any]]:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        frames = await writer.frames()
        if len(frames) >= count:
            return frames
        if loop.time() > deadline:
            raise TimeoutError(f"expected {count} frames, got {len(frames)}")
        await asyncio.sleep(0.01)


class FakeConnection:
    """In-memory stand-in for JsonRpcConnection.

    `responses` maps a method to a result, an exception to raise, or a
    callable (plain or async) taking params.
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = responses or {}
        self.requests: list[tuple[str, Any]] = []
        self.notifications: list[tuple[str, Any]] = []
        self.closed = False
        self.dispose_calls = 0

    async def send_request(self, method: str, params: Any = None) -> Any:
        if self.closed:
            raise TransportClosedError("closed")
        self.requests.append((method, params))
        value = self.responses.get(method)
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            value = value(params)
            if inspect.isawaitable(value):
                value = await value
        return value

    async def send_notification(self, method: str, params: Any = None) -> None:
        if self.closed:
            raise TransportClosedError("closed")
        self.notifications.append((method, params))

    def dispose(self) -> None:
        self.dispose_calls += 1
        self.closed = True

    def notified(self, method: str) -> list[Any]:
        return [params for name, params in self.notifications if name == method]

    def requested(self, method: str) -> list[Any]:
        return [params for name, params in self.requests if name == method]
