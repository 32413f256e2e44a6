"""lspbridge - an asyncio client for out-of-process language servers.

Spawns a Language Server Protocol server, performs the initialize
handshake, keeps the server's view of open documents in sync, and exposes
completion, hover, definition and diagnostic requests.

Example:
    from lspbridge import LSPClient, ServerConfig

    config = ServerConfig(command="yaml-language-server", workspace_path="/srv/app")
    async with LSPClient(config) as client:
        await client.open_document("file:///srv/app/site.yml", "yaml", text)
        diagnostics = await client.get_diagnostics("file:///srv/app/site.yml")
"""

__version__ = "0.1.0"

from lspbridge.client import ClientState, LSPClient, TrackedDocument  # noqa: E402
from lspbridge.config import Config, ServerConfig, load_config  # noqa: E402
from lspbridge.errors import (  # noqa: E402
    AlreadyStartedError,
    DocumentNotFoundError,
    InvalidPositionError,
    LSPClientError,
    NotInitializedError,
    NotStartedError,
    ProtocolError,
    ServerStartError,
    TransportClosedError,
)

__all__ = [
    "__version__",
    "LSPClient",
    "ClientState",
    "TrackedDocument",
    "Config",
    "ServerConfig",
    "load_config",
    "LSPClientError",
    "AlreadyStartedError",
    "NotStartedError",
    "NotInitializedError",
    "DocumentNotFoundError",
    "InvalidPositionError",
    "TransportClosedError",
    "ProtocolError",
    "ServerStartError",
]
