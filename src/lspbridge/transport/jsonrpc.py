"""JSON-RPC 2.0 connection over an LSP-framed byte stream.

Responses are correlated to requests by id, not arrival order. The server
may interleave its own requests (capability registration) with answers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from lspbridge.errors import ProtocolError, TransportClosedError
from lspbridge.logging import TRACE
from lspbridge.transport.framing import (
    DEFAULT_MAX_MESSAGE_SIZE,
    LSPFramingError,
    read_message,
    write_message,
)

_log = logging.getLogger("lspbridge.transport")

# JSON-RPC error codes
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

# A handler receives the params member and returns the result (or an awaitable of it)
Handler = Callable[[Any], Any]


@dataclass
class JsonRpcMessage:
    """Parsed JSON-RPC message.

    `has_result` records whether a `result` member was present, so a null
    result still makes the message a response.
    """

    id: int | str | None = None
    method: str | None = None
    params: Any = None
    result: Any = None
    error: dict[str, Any] | None = None
    has_result: bool = False
    jsonrpc: str = "2.0"

    def is_request(self) -> bool:
        return self.method is not None and self.id is not None

    def is_notification(self) -> bool:
        return self.method is not None and self.id is None

    def is_response(self) -> bool:
        return self.method is None and (self.has_result or self.error is not None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            d["id"] = self.id
        if self.method is not None:
            d["method"] = self.method
        if self.params is not None:
            d["params"] = self.params
        if self.error is not None:
            d["error"] = self.error
        elif self.has_result:
            d["result"] = self.result
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JsonRpcMessage:
        error = data.get("error")
        if error is not None and not isinstance(error, dict):
            error = {"code": INTERNAL_ERROR, "message": "Malformed error response", "data": error}
        return cls(
            id=data.get("id"),
            method=data.get("method"),
            params=data.get("params"),
            result=data.get("result"),
            error=error,
            has_result="result" in data,
            jsonrpc=data.get("jsonrpc", "2.0"),
        )

    @classmethod
    def request(cls, request_id: int | str, method: str, params: Any = None) -> JsonRpcMessage:
        return cls(id=request_id, method=method, params=params)

    @classmethod
    def notification(cls, method: str, params: Any = None) -> JsonRpcMessage:
        return cls(method=method, params=params)

    @classmethod
    def response(cls, request_id: int | str, result: Any) -> JsonRpcMessage:
        return cls(id=request_id, result=result, has_result=True)

    @classmethod
    def error_response(
        cls, request_id: int | str, code: int, message: str, data: Any = None
    ) -> JsonRpcMessage:
        error: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        return cls(id=request_id, error=error)


class JsonRpcConnection:
    """Bidirectional JSON-RPC channel.

    Usage:
        conn = JsonRpcConnection(process.stdout, process.stdin, name="yamlls")
        conn.register_handler("client/registerCapability", lambda params: None)
        conn.start_listening()
        result = await conn.send_request("initialize", params)
        await conn.send_notification("initialized", {})
        conn.dispose()

    Handlers must be registered before start_listening(): the peer may send
    a request as soon as the channel is open.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        name: str = "server",
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self.name = name
        self._reader = reader
        self._writer = writer
        self._max_message_size = max_message_size
        self._handlers: dict[str, Handler] = {}
        self._pending: dict[int | str, asyncio.Future[JsonRpcMessage]] = {}
        self._next_id = 0
        self._write_lock = asyncio.Lock()
        self._reader_task: asyncio.Task[None] | None = None
        self._handler_tasks: set[asyncio.Task[None]] = set()
        self._close_callbacks: list[Callable[[], None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def listening(self) -> bool:
        return self._reader_task is not None and not self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def register_handler(self, method: str, handler: Handler) -> None:
        """Install a handler for inbound requests or notifications named `method`.

        Raises:
            RuntimeError: If the connection is already listening.
        """
        if self._reader_task is not None:
            raise RuntimeError(f"Handler for {method!r} registered after listening started")
        self._handlers[method] = handler

    def on_close(self, callback: Callable[[], None]) -> None:
        """Run `callback` once when the connection closes for any reason."""
        if self._closed:
            callback()
            return
        self._close_callbacks.append(callback)

    def start_listening(self) -> None:
        """Start dispatching inbound frames on a background task."""
        if self._closed:
            raise TransportClosedError(f"Connection to {self.name} is closed")
        if self._reader_task is not None:
            raise RuntimeError(f"Connection to {self.name} is already listening")
        self._reader_task = asyncio.get_running_loop().create_task(
            self._read_loop(), name=f"lspbridge-reader-{self.name}"
        )

    async def send_request(self, method: str, params: Any = None) -> Any:
        """Send a request and wait for its correlated response.

        Returns:
            The response's `result` member (may be None).

        Raises:
            ProtocolError: If the peer answered with an error.
            TransportClosedError: If the connection closed before the answer.
        """
        if self._closed:
            raise TransportClosedError(f"Connection to {self.name} is closed")

        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future[JsonRpcMessage] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._write(JsonRpcMessage.request(request_id, method, params))
            response = await future
        finally:
            self._pending.pop(request_id, None)

        if response.error is not None:
            raise ProtocolError.from_error(response.error)
        return response.result

    async def send_notification(self, method: str, params: Any = None) -> None:
        """Send a one-way message.

        Raises:
            TransportClosedError: If the connection is closed or the write fails.
        """
        await self._write(JsonRpcMessage.notification(method, params))

    def dispose(self) -> None:
        """Close the channel. Idempotent.

        Pending requests fail with TransportClosedError.
        """
        if self._closed:
            return
        self._close(f"Connection to {self.name} was disposed")
        task = self._reader_task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

    async def _write(self, message: JsonRpcMessage) -> None:
        payload = message.to_dict()
        async with self._write_lock:
            if self._closed:
                raise TransportClosedError(f"Connection to {self.name} is closed")
            _log.log(TRACE, "--> %s %s", self.name, payload)
            try:
                await write_message(self._writer, payload)
            except (ConnectionError, OSError, RuntimeError) as e:
                raise TransportClosedError(f"Failed to write to {self.name}: {e}") from e

    async def _read_loop(self) -> None:
        reason = f"{self.name} closed its output stream"
        try:
            while True:
                data = await read_message(self._reader, max_message_size=self._max_message_size)
                if data is None:
                    break
                _log.log(TRACE, "<-- %s %s", self.name, data)
                self._dispatch(JsonRpcMessage.from_dict(data))
        except LSPFramingError as e:
            _log.error("Framing error from %s: %s", self.name, e)
            reason = f"Framing error from {self.name}: {e}"
        except (ConnectionError, OSError) as e:
            _log.warning("Read from %s failed: %s", self.name, e)
            reason = f"Read from {self.name} failed: {e}"
        self._close(reason)

    def _dispatch(self, message: JsonRpcMessage) -> None:
        if message.method is None:
            future = self._pending.get(message.id) if message.id is not None else None
            if future is None or future.done():
                _log.warning("Dropping response with unknown id %r from %s", message.id, self.name)
                return
            if not message.is_response():
                # Neither result nor error; the caller still gets an answer
                _log.warning("Malformed response for id %r from %s", message.id, self.name)
                message = JsonRpcMessage.error_response(
                    message.id, INTERNAL_ERROR, "Malformed response"
                )
            future.set_result(message)
        elif message.is_request():
            self._spawn(self._handle_request(message))
        elif message.is_notification():
            self._spawn(self._handle_notification(message))
        else:
            _log.warning("Dropping malformed message from %s: %s", self.name, message.to_dict())

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    async def _handle_request(self, message: JsonRpcMessage) -> None:
        assert message.method is not None and message.id is not None
        handler = self._handlers.get(message.method)
        if handler is None:
            _log.debug("No handler for %s request from %s", message.method, self.name)
            reply = JsonRpcMessage.error_response(
                message.id, METHOD_NOT_FOUND, f"Method not found: {message.method}"
            )
        else:
            try:
                result = await _invoke(handler, message.params)
            except Exception as e:
                _log.error("Handler for %s request failed: %s", message.method, e)
                reply = JsonRpcMessage.error_response(message.id, INTERNAL_ERROR, str(e))
            else:
                reply = JsonRpcMessage.response(message.id, result)

        try:
            await self._write(reply)
        except TransportClosedError:
            _log.debug("Could not answer %s request; connection closed", message.method)

    async def _handle_notification(self, message: JsonRpcMessage) -> None:
        assert message.method is not None
        handler = self._handlers.get(message.method)
        if handler is None:
            _log.debug("Ignoring %s notification from %s", message.method, self.name)
            return
        try:
            await _invoke(handler, message.params)
        except Exception as e:
            _log.error("Handler for %s notification failed: %s", message.method, e)

    def _close(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        _log.debug("Closing connection: %s", reason)

        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportClosedError(reason))
        self._pending.clear()

        for task in list(self._handler_tasks):
            task.cancel()

        try:
            self._writer.close()
        except (OSError, RuntimeError) as e:
            _log.debug("Error closing writer for %s: %s", self.name, e)

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                _log.warning("Close callback for %s failed: %s", self.name, e)


async def _invoke(handler: Handler, params: Any) -> Any:
    result = handler(params)
    if inspect.isawaitable(result):
        result = await result
    return result
