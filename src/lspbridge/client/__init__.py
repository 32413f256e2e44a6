"""LSP client engine and document tracking."""

from lspbridge.client.documents import TrackedDocument
from lspbridge.client.engine import ClientState, LSPClient

__all__ = [
    "ClientState",
    "LSPClient",
    "TrackedDocument",
]
