"""LSP client engine.

Owns one language server process and the JSON-RPC connection to it,
drives the initialize handshake, tracks open documents, and exposes the
completion, hover, definition and diagnostic requests.

The engine imposes no request timeout. A hung server leaves a request
pending until the process exits; callers that need a deadline wrap the
call in asyncio.wait_for().
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from lspbridge import __version__
from lspbridge.client.documents import TrackedDocument
from lspbridge.config.loader import expand_env_vars
from lspbridge.errors import (
    AlreadyStartedError,
    DocumentNotFoundError,
    InvalidPositionError,
    LSPClientError,
    NotInitializedError,
    NotStartedError,
    ServerStartError,
    TransportClosedError,
)
from lspbridge.protocol.types import (
    ClientInfo,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DocumentDiagnosticParams,
    InitializeParams,
    Position,
    TextDocumentIdentifier,
    TextDocumentPositionParams,
    VersionedTextDocumentIdentifier,
    WorkspaceFolder,
    diagnostic_items,
    summarize_capabilities,
)
from lspbridge.transport.jsonrpc import JsonRpcConnection

if TYPE_CHECKING:
    from lspbridge.config.schema import Config, ServerConfig

_log = logging.getLogger("lspbridge.client")
_server_log = logging.getLogger("lspbridge.server")

# window/logMessage and window/showMessage MessageType -> logging level
_MESSAGE_TYPE_LEVELS = {
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
}


class ClientState(Enum):
    """Lifecycle of one client session."""

    UNSTARTED = "unstarted"
    STARTING = "starting"
    STARTED = "started"  # Process running, handshake not done
    READY = "ready"
    TERMINATED = "terminated"


def _acknowledge_registration(params: Any) -> None:
    # Only static capabilities are declared; accept and ignore
    _log.debug("Server attempted to register capabilities: %s", params)
    return None


def _acknowledge_unregistration(params: Any) -> None:
    _log.debug("Server attempted to unregister capabilities: %s", params)
    return None


def _forward_server_message(params: Any) -> None:
    if not isinstance(params, dict):
        return
    level = _MESSAGE_TYPE_LEVELS.get(params.get("type"), logging.INFO)
    _server_log.log(level, "%s", params.get("message", ""))


class LSPClient:
    """Client for one out-of-process language server.

    Usage:
        client = LSPClient(ServerConfig(command="yaml-language-server",
                                        workspace_path="/srv/project"))
        await client.start()
        await client.initialize()
        await client.open_document("file:///srv/project/a.yml", "yaml", "a: 1")
        hover = await client.get_hover("file:///srv/project/a.yml", 0, 0)
        await client.dispose()

    One instance is one session. After the server exits the instance stays
    terminated; build a new one to reconnect.
    """

    def __init__(self, server: ServerConfig, *, client_name: str = "lspbridge") -> None:
        if not server.command:
            raise ValueError("ServerConfig.command is required")
        self.server = server
        self.client_name = client_name
        self._workspace = Path(server.workspace_path).resolve()
        self._state = ClientState.UNSTARTED
        self._process: asyncio.subprocess.Process | None = None
        self._connection: JsonRpcConnection | None = None
        self._initialized = False
        self._capabilities: dict[str, Any] = {}
        self._documents: dict[str, TrackedDocument] = {}
        self._observers: list[asyncio.Task[None]] = []
        self._init_lock = asyncio.Lock()
        self._pending_init: asyncio.Task[None] | None = None
        self._start_finished = asyncio.Event()
        self._shutdown_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> LSPClient:
        return cls(config.server, **kwargs)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def workspace(self) -> Path:
        return self._workspace

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def server_capabilities(self) -> dict[str, Any]:
        return self._capabilities

    @property
    def documents(self) -> Mapping[str, TrackedDocument]:
        return MappingProxyType(self._documents)

    def get_document(self, uri: str) -> TrackedDocument | None:
        return self._documents.get(uri)

    def capability_summary(self) -> dict[str, bool]:
        return summarize_capabilities(self._capabilities)

    def is_ready(self) -> bool:
        """True while a live connection exists and the handshake has completed."""
        connection = self._connection
        return connection is not None and not connection.closed and self._initialized

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the server and start listening on its stdout.

        Raises:
            AlreadyStartedError: If the client is not in the unstarted state.
            ServerStartError: If the executable cannot be spawned.
        """
        if self._state is not ClientState.UNSTARTED:
            raise AlreadyStartedError(f"LSP server already started (state: {self._state.value})")
        self._state = ClientState.STARTING
        self._start_finished.clear()
        try:
            await self._spawn()
        finally:
            self._start_finished.set()

    async def _spawn(self) -> None:
        command = [self.server.command, *self.server.args]
        env = dict(os.environ)
        env.update(expand_env_vars(self.server.env))

        _log.info("Starting language server: %s (cwd=%s)", " ".join(command), self._workspace)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._workspace),
                env=env,
            )
        except OSError as e:
            self._state = ClientState.UNSTARTED
            _log.error("Failed to start language server %s: %s", self.server.command, e)
            raise ServerStartError(f"Failed to start {self.server.command}: {e}") from e

        assert process.stdin is not None and process.stdout is not None
        self._process = process

        connection = JsonRpcConnection(
            process.stdout, process.stdin, name=Path(self.server.command).name
        )
        connection.register_handler("client/registerCapability", _acknowledge_registration)
        connection.register_handler("client/unregisterCapability", _acknowledge_unregistration)
        connection.register_handler("window/logMessage", _forward_server_message)
        connection.register_handler("window/showMessage", _forward_server_message)
        connection.start_listening()
        self._connection = connection

        loop = asyncio.get_running_loop()
        if process.stderr is not None:
            self._observers.append(loop.create_task(self._pump_stderr(process.stderr)))
        self._observers.append(loop.create_task(self._watch_exit(process)))

        self._state = ClientState.STARTED
        _log.info("Language server started (pid %s)", process.pid)

    async def initialize(self) -> dict[str, Any]:
        """Run the initialize handshake.

        Sends `initialized` only after the first successful `initialize`
        response of this session; later calls re-send `initialize` alone.

        Returns:
            The server's InitializeResult.

        Raises:
            TransportClosedError: If this session has already terminated.
            NotStartedError: If there is no live connection.
        """
        async with self._init_lock:
            if self._state is ClientState.TERMINATED:
                raise TransportClosedError("Language server session has terminated")
            connection = self._connection
            if connection is None or connection.closed:
                raise NotStartedError("LSP server not started")

            params = self._initialize_params()
            result = await connection.send_request("initialize", params.to_wire())
            if isinstance(result, dict) and isinstance(result.get("capabilities"), dict):
                self._capabilities = result["capabilities"]

            if not self._initialized:
                await connection.send_notification("initialized", {})
                self._initialized = True
                if self._state is ClientState.STARTED:
                    self._state = ClientState.READY
                _log.info("Language server initialized with capabilities: %s", self.capability_summary())

            return result

    async def ensure_ready(self) -> None:
        """Start and initialize on first use.

        Concurrent callers share one in-flight start/initialize attempt.

        Raises:
            TransportClosedError: If this session has already terminated.
            NotInitializedError: If the attempt finished without a ready session.
        """
        if self.is_ready():
            return
        if self._state is ClientState.TERMINATED:
            raise TransportClosedError("Language server session has terminated")

        task = self._pending_init
        if task is None:
            task = asyncio.get_running_loop().create_task(self._start_and_initialize())
            self._pending_init = task
            task.add_done_callback(self._clear_pending_init)
        await asyncio.shield(task)

        if not self.is_ready():
            raise NotInitializedError("LSP server not initialized")

    async def _start_and_initialize(self) -> None:
        if self._state is ClientState.STARTING:
            # An explicit start() is mid-spawn; initialize once it settles
            await self._start_finished.wait()
        if self._state is ClientState.UNSTARTED:
            await self.start()
        await self.initialize()

    def _clear_pending_init(self, task: asyncio.Task[None]) -> None:
        if self._pending_init is task:
            self._pending_init = None
        if not task.cancelled() and task.exception() is not None:
            _log.debug("Lazy initialization failed: %s", task.exception())

    async def shutdown(self) -> None:
        """Shut the server down and release the session. Idempotent.

        Sends `shutdown` and `exit` when the session is ready. The process is
        killed afterwards if still running, whether or not the handshake
        succeeded. Concurrent and repeated calls wait on the first one.
        """
        task = self._shutdown_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._shutdown())
            self._shutdown_task = task
        await asyncio.shield(task)

    async def _shutdown(self) -> None:
        connection = self._connection
        if connection is not None and not connection.closed and self._initialized:
            try:
                await connection.send_request("shutdown")
            except LSPClientError as e:
                _log.warning("Shutdown request failed: %s", e)
            try:
                await connection.send_notification("exit")
            except LSPClientError as e:
                _log.warning("Exit notification failed: %s", e)

        await self._teardown()

    async def dispose(self) -> None:
        """Release everything this client owns. Safe to call repeatedly."""
        await self.shutdown()

    async def __aenter__(self) -> LSPClient:
        try:
            await self.ensure_ready()
        except BaseException:
            await self.dispose()
            raise
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.dispose()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def open_document(self, uri: str, language_id: str, text: str) -> TrackedDocument:
        """Track a document and send didOpen when ready."""
        document = TrackedDocument(uri=uri, language_id=language_id, text=text)
        self._documents[uri] = document

        if self.is_ready():
            params = DidOpenTextDocumentParams(text_document=document.to_item())
            await self._notify("textDocument/didOpen", params.to_wire())
        return document

    async def update_document(self, uri: str, text: str) -> TrackedDocument:
        """Replace a tracked document's text and send didChange when ready.

        Raises:
            DocumentNotFoundError: If `uri` is not tracked.
        """
        document = self._documents.get(uri)
        if document is None:
            raise DocumentNotFoundError(uri)

        change = document.replace(text)

        if self.is_ready():
            params = DidChangeTextDocumentParams(
                text_document=VersionedTextDocumentIdentifier(uri=uri, version=document.version),
                content_changes=[change],
            )
            await self._notify("textDocument/didChange", params.to_wire())
        return document

    async def close_document(self, uri: str) -> None:
        """Stop tracking a document and send didClose when ready."""
        self._documents.pop(uri, None)

        if self.is_ready():
            params = DidCloseTextDocumentParams(text_document=TextDocumentIdentifier(uri=uri))
            await self._notify("textDocument/didClose", params.to_wire())

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def get_completions(self, uri: str, line: int, character: int) -> Any:
        """textDocument/completion: CompletionList, CompletionItem[] or None."""
        return await self._position_request("textDocument/completion", uri, line, character)

    async def get_hover(self, uri: str, line: int, character: int) -> Any:
        """textDocument/hover: Hover or None."""
        return await self._position_request("textDocument/hover", uri, line, character)

    async def get_definition(self, uri: str, line: int, character: int) -> Any:
        """textDocument/definition: Location, Location[], LocationLink[] or None."""
        return await self._position_request("textDocument/definition", uri, line, character)

    async def get_diagnostics(self, uri: str) -> list[dict[str, Any]]:
        """textDocument/diagnostic, normalized to a plain list of diagnostics."""
        connection = self._require_ready()
        params = DocumentDiagnosticParams(text_document=TextDocumentIdentifier(uri=uri))
        report = await connection.send_request("textDocument/diagnostic", params.to_wire())
        return diagnostic_items(report)

    async def _position_request(self, method: str, uri: str, line: int, character: int) -> Any:
        if line < 0 or character < 0:
            raise InvalidPositionError(line, character)
        connection = self._require_ready()
        params = TextDocumentPositionParams(
            text_document=TextDocumentIdentifier(uri=uri),
            position=Position(line=line, character=character),
        )
        return await connection.send_request(method, params.to_wire())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_ready(self) -> JsonRpcConnection:
        connection = self._connection
        if connection is None or connection.closed or not self._initialized:
            raise NotInitializedError("LSP server not initialized")
        return connection

    async def _notify(self, method: str, params: dict[str, Any]) -> None:
        assert self._connection is not None
        await self._connection.send_notification(method, params)

    def _initialize_params(self) -> InitializeParams:
        root_uri = self._workspace.as_uri()
        return InitializeParams(
            process_id=os.getpid(),
            root_uri=root_uri,
            root_path=str(self._workspace),
            client_info=ClientInfo(name=self.client_name, version=__version__),
            workspace_folders=[WorkspaceFolder(uri=root_uri, name=self._workspace.name)],
            initialization_options=self.server.initialization_options,
        )

    async def _pump_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # Over-long line; readline already discarded it
                _server_log.debug("stderr: line exceeded buffer limit")
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                _server_log.info("stderr: %s", text)

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        if returncode == 0:
            _log.info("Language server exited with code %s", returncode)
        else:
            _log.warning("Language server exited with code %s", returncode)
        self._handle_exit()

    def _handle_exit(self) -> None:
        # Exit may race with shutdown(); whoever gets here first disposes
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.dispose()
        self._initialized = False
        self._state = ClientState.TERMINATED

    async def _teardown(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.dispose()

        process = self._process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

        observers, self._observers = self._observers, []
        for task in observers:
            if not task.done():
                task.cancel()
        if observers:
            await asyncio.gather(*observers, return_exceptions=True)

        self._documents.clear()
        self._initialized = False
        self._capabilities = {}
        self._state = ClientState.TERMINATED
        _log.info("Language server session closed")
