"""Protocol transport: LSP framing and a JSON-RPC connection on top of it."""

from lspbridge.transport.framing import (
    LSPFramingError,
    encode_message,
    parse_header,
    read_message,
    write_message,
)
from lspbridge.transport.jsonrpc import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    JsonRpcConnection,
    JsonRpcMessage,
)

__all__ = [
    "LSPFramingError",
    "encode_message",
    "parse_header",
    "read_message",
    "write_message",
    "JsonRpcConnection",
    "JsonRpcMessage",
    "METHOD_NOT_FOUND",
    "INTERNAL_ERROR",
]
