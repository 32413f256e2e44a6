"""Error taxonomy for the LSP client.

Every failure surfaced to a caller derives from LSPClientError so the
calling layer can catch one base type and turn it into user-facing text.
"""

from __future__ import annotations

from typing import Any


class LSPClientError(Exception):
    """Base class for all client errors."""

    pass


class AlreadyStartedError(LSPClientError):
    """start() was called on a client that is not in the unstarted state."""

    pass


class NotStartedError(LSPClientError):
    """initialize() was called before the server process was started."""

    pass


class NotInitializedError(LSPClientError):
    """A request operation was issued before the session became ready."""

    pass


class ServerStartError(LSPClientError):
    """The language server executable could not be spawned."""

    pass


class DocumentNotFoundError(LSPClientError):
    """An update targeted a URI that is not tracked."""

    def __init__(self, uri: str) -> None:
        super().__init__(f"Document not found: {uri}")
        self.uri = uri


class InvalidPositionError(LSPClientError, ValueError):
    """A request position had a negative line or character."""

    def __init__(self, line: int, character: int) -> None:
        super().__init__(f"Invalid position {line}:{character}; line and character must be >= 0")
        self.line = line
        self.character = character


class TransportClosedError(LSPClientError):
    """The connection closed before a response arrived or a write could be made."""

    pass


class ProtocolError(LSPClientError):
    """The remote peer answered with a JSON-RPC error response.

    Attributes:
        code: JSON-RPC error code (e.g. -32601 for method not found).
        message: Error message reported by the peer.
        data: Optional structured data attached to the error.
    """

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_error(cls, error: dict[str, Any]) -> ProtocolError:
        """Build from the `error` member of a response."""
        code = error.get("code", -32603)
        if not isinstance(code, int):
            code = -32603
        return cls(code, str(error.get("message", "")), error.get("data"))
