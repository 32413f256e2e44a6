"""LSP base protocol framing.

Every message on the wire is a header block followed by a JSON body:

    Content-Length: <byte count>\r\n
    [Content-Type: application/vscode-jsonrpc; charset=utf-8]\r\n
    \r\n
    <json-rpc-message>

Content-Length is mandatory and counts bytes of the UTF-8 encoded body.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

HEADER_ENCODING = "ascii"
CONTENT_ENCODING = "utf-8"
CRLF = b"\r\n"
CONTENT_LENGTH = "Content-Length"
DEFAULT_MAX_MESSAGE_SIZE = 10 * 1024 * 1024


class LSPFramingError(Exception):
    """The byte stream does not contain a well-formed LSP message.

    Raised for a missing, non-integer or negative Content-Length, malformed
    header lines, truncated bodies, and bodies that are not a JSON object.
    """

    pass


def parse_header(header_bytes: bytes) -> dict[str, str]:
    """Parse an LSP header block.

    Args:
        header_bytes: Header lines without the terminating blank line, e.g.
            b"Content-Length: 42\\r\\nContent-Type: application/json".

    Returns:
        Mapping of header name to value, whitespace stripped.

    Raises:
        LSPFramingError: If the block is empty or malformed, or Content-Length
            is missing or invalid.
    """
    if not header_bytes:
        raise LSPFramingError("Empty header block")

    try:
        text = header_bytes.decode(HEADER_ENCODING)
    except UnicodeDecodeError as e:
        raise LSPFramingError(f"Header contains non-ASCII characters: {e}") from e

    headers: dict[str, str] = {}
    for line in text.split("\r\n"):
        if not line:
            continue
        name, sep, value = line.partition(":")
        if not sep:
            raise LSPFramingError(f"Malformed header line (no colon): {line!r}")
        name = name.strip()
        if not name:
            raise LSPFramingError(f"Empty header name in line: {line!r}")
        headers[name] = value.strip()

    if CONTENT_LENGTH not in headers:
        raise LSPFramingError("Missing required Content-Length header")

    try:
        length = int(headers[CONTENT_LENGTH])
    except ValueError as e:
        raise LSPFramingError(f"Invalid Content-Length value: {headers[CONTENT_LENGTH]!r}") from e
    if length < 0:
        raise LSPFramingError(f"Negative Content-Length: {length}")

    return headers


def encode_message(msg: dict[str, Any]) -> bytes:
    """Serialize a JSON-RPC message into a complete frame.

    Raises:
        LSPFramingError: If the message is not JSON-serializable.
    """
    try:
        body = json.dumps(msg, separators=(",", ":")).encode(CONTENT_ENCODING)
    except (TypeError, ValueError) as e:
        raise LSPFramingError(f"Message cannot be serialized to JSON: {e}") from e
    header = f"{CONTENT_LENGTH}: {len(body)}\r\n\r\n".encode(HEADER_ENCODING)
    return header + body


async def _read_header_block(reader: asyncio.StreamReader) -> bytes | None:
    lines: list[bytes] = []
    while True:
        try:
            line = await reader.readuntil(CRLF)
        except asyncio.IncompleteReadError as e:
            if not lines and not e.partial:
                return None  # Clean EOF between messages
            raise LSPFramingError("Unexpected EOF while reading headers") from e
        except asyncio.LimitOverrunError as e:
            raise LSPFramingError(f"Header line too long: {e}") from e

        if line == CRLF:
            if not lines:
                # Tolerate stray blank lines between frames
                continue
            return b"".join(lines)[: -len(CRLF)]
        lines.append(line)


async def read_message(
    reader: asyncio.StreamReader,
    *,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
) -> dict[str, Any] | None:
    """Read a single framed message.

    Args:
        reader: Stream to read from (typically a child process's stdout).
        max_message_size: Upper bound on Content-Length.

    Returns:
        The decoded JSON object, or None on EOF at a message boundary.

    Raises:
        LSPFramingError: On malformed framing, oversized or truncated bodies,
            invalid UTF-8/JSON, or a body that is not a JSON object.
    """
    header_bytes = await _read_header_block(reader)
    if header_bytes is None:
        return None

    headers = parse_header(header_bytes)
    length = int(headers[CONTENT_LENGTH])
    if length > max_message_size:
        raise LSPFramingError(f"Message size {length} exceeds maximum {max_message_size}")

    try:
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise LSPFramingError(
            f"Incomplete message body: expected {length} bytes, got {len(e.partial)}"
        ) from e

    try:
        message = json.loads(body.decode(CONTENT_ENCODING))
    except UnicodeDecodeError as e:
        raise LSPFramingError(f"Invalid UTF-8 in message body: {e}") from e
    except json.JSONDecodeError as e:
        raise LSPFramingError(f"Invalid JSON in message body: {e}") from e

    if not isinstance(message, dict):
        raise LSPFramingError(f"JSON-RPC message must be an object, got {type(message).__name__}")

    return message


async def write_message(
    writer: asyncio.StreamWriter,
    msg: dict[str, Any],
    *,
    drain: bool = True,
) -> None:
    """Write one framed message; header and body go out in a single write()."""
    writer.write(encode_message(msg))
    if drain:
        await writer.drain()
