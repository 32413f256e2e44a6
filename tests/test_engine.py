"""Tests for LSPClient state handling against an in-memory connection."""

from __future__ import annotations

import asyncio

import pytest

from lspbridge.client.engine import ClientState, LSPClient
from lspbridge.config.schema import Config, ServerConfig
from lspbridge.errors import (
    AlreadyStartedError,
    DocumentNotFoundError,
    InvalidPositionError,
    LSPClientError,
    NotInitializedError,
    NotStartedError,
    ProtocolError,
    TransportClosedError,
)

from tests.utils import FakeConnection

URI = "file:///w/a.yml"

CAPABILITIES = {
    "hoverProvider": True,
    "completionProvider": {"triggerCharacters": [":"]},
    "definitionProvider": False,
}


def make_client(responses: dict | None = None) -> tuple[LSPClient, FakeConnection]:
    client = LSPClient(ServerConfig(command="yaml-language-server", workspace_path="/w"))
    fake = FakeConnection({"initialize": {"capabilities": CAPABILITIES}, **(responses or {})})
    client._connection = fake  # type: ignore[assignment]
    client._state = ClientState.STARTED
    return client, fake


async def ready_client(responses: dict | None = None) -> tuple[LSPClient, FakeConnection]:
    client, fake = make_client(responses)
    await client.initialize()
    fake.notifications.clear()
    return client, fake


class TestConstruction:
    def test_command_required(self) -> None:
        with pytest.raises(ValueError, match="command"):
            LSPClient(ServerConfig())

    def test_from_config(self) -> None:
        config = Config(server=ServerConfig(command="yaml-language-server", workspace_path="/w"))
        client = LSPClient.from_config(config)

        assert client.state is ClientState.UNSTARTED
        assert client.server is config.server
        assert client.pid is None
        assert client.returncode is None
        assert not client.is_ready()


class TestLifecycle:
    async def test_start_twice_raises(self) -> None:
        client, _ = make_client()
        with pytest.raises(AlreadyStartedError):
            await client.start()

    async def test_initialize_before_start_raises(self) -> None:
        client = LSPClient(ServerConfig(command="yaml-language-server"))
        with pytest.raises(NotStartedError):
            await client.initialize()

    async def test_initialize_sends_initialized_once(self) -> None:
        client, fake = make_client()

        first = await client.initialize()
        second = await client.initialize()

        assert first == second == {"capabilities": CAPABILITIES}
        assert len(fake.requested("initialize")) == 2
        assert fake.notified("initialized") == [{}]
        assert client.state is ClientState.READY
        assert client.is_ready()

    async def test_initialize_params(self) -> None:
        client, fake = make_client()
        await client.initialize()

        [params] = fake.requested("initialize")
        assert isinstance(params["processId"], int)
        assert params["rootUri"].startswith("file://")
        assert params["clientInfo"]["name"] == "lspbridge"
        assert params["workspaceFolders"][0]["uri"] == params["rootUri"]
        assert params["capabilities"]["textDocument"]["hover"] == {"dynamicRegistration": False}

    async def test_capabilities_stored(self) -> None:
        client, _ = await ready_client()

        assert client.server_capabilities == CAPABILITIES
        assert client.capability_summary() == {
            "completion": True,
            "hover": True,
            "definition": False,
            "diagnostic": False,
        }

    async def test_failed_initialize_leaves_client_unready(self) -> None:
        client, fake = make_client({"initialize": ProtocolError(-32603, "boom")})

        with pytest.raises(ProtocolError):
            await client.initialize()

        assert fake.notified("initialized") == []
        assert client.state is ClientState.STARTED
        assert not client.is_ready()

    async def test_readiness_follows_connection(self) -> None:
        client, fake = await ready_client()

        fake.closed = True

        assert not client.is_ready()
        with pytest.raises(NotInitializedError):
            await client.get_hover(URI, 0, 0)

    async def test_server_exit_terminates_session(self) -> None:
        client, fake = await ready_client()
        await client.open_document(URI, "yaml", "a: 1")

        client._handle_exit()

        assert fake.dispose_calls == 1
        assert client.state is ClientState.TERMINATED
        assert not client.is_ready()
        assert client.get_document(URI) is not None
        with pytest.raises(TransportClosedError):
            await client.ensure_ready()

    async def test_shutdown_sends_shutdown_then_exit(self) -> None:
        client, fake = await ready_client()

        await client.shutdown()

        assert fake.requested("shutdown") == [None]
        assert fake.notified("exit") == [None]
        assert fake.dispose_calls == 1
        assert client.state is ClientState.TERMINATED

    async def test_shutdown_continues_when_request_fails(self) -> None:
        client, fake = await ready_client({"shutdown": ProtocolError(-32603, "busy")})
        await client.open_document(URI, "yaml", "a: 1")

        await client.shutdown()

        assert fake.notified("exit") == [None]
        assert client.documents == {}
        assert client.server_capabilities == {}
        assert client.state is ClientState.TERMINATED
        assert not client.is_ready()

    async def test_shutdown_without_handshake_skips_messages(self) -> None:
        client, fake = make_client()

        await client.shutdown()

        assert fake.requests == []
        assert fake.notifications == []
        assert client.state is ClientState.TERMINATED

    async def test_shutdown_and_dispose_are_idempotent(self) -> None:
        client, fake = await ready_client()

        await client.shutdown()
        await client.dispose()
        await client.dispose()

        assert fake.requested("shutdown") == [None]
        assert fake.dispose_calls == 1

    async def test_initialize_after_termination_raises_transport_closed(self) -> None:
        client, fake = await ready_client()
        client._handle_exit()

        with pytest.raises(TransportClosedError):
            await client.initialize()

        assert len(fake.requested("initialize")) == 1

    async def test_concurrent_shutdowns_send_shutdown_once(self) -> None:
        async def slow_shutdown(params):
            await asyncio.sleep(0.01)
            return None

        client, fake = await ready_client({"shutdown": slow_shutdown})

        await asyncio.gather(client.shutdown(), client.shutdown(), client.dispose())

        assert fake.requested("shutdown") == [None]
        assert fake.notified("exit") == [None]
        assert fake.dispose_calls == 1
        assert client.state is ClientState.TERMINATED


class TestEnsureReady:
    async def test_concurrent_callers_share_one_attempt(self) -> None:
        client = LSPClient(ServerConfig(command="yaml-language-server"))
        calls = []
        release = asyncio.Event()

        async def start_and_initialize() -> None:
            calls.append(1)
            await release.wait()
            client._connection = FakeConnection()  # type: ignore[assignment]
            client._initialized = True
            client._state = ClientState.READY

        client._start_and_initialize = start_and_initialize  # type: ignore[method-assign]

        waiters = [asyncio.create_task(client.ensure_ready()) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(*waiters)

        assert calls == [1]
        assert client.is_ready()
        assert client._pending_init is None

    async def test_ready_client_returns_immediately(self) -> None:
        client, fake = await ready_client()
        await client.ensure_ready()
        assert len(fake.requested("initialize")) == 1

    async def test_failure_propagates_to_every_caller(self) -> None:
        client = LSPClient(ServerConfig(command="yaml-language-server"))

        async def start_and_initialize() -> None:
            await asyncio.sleep(0)
            raise NotStartedError("LSP server not started")

        client._start_and_initialize = start_and_initialize  # type: ignore[method-assign]

        results = await asyncio.gather(
            client.ensure_ready(), client.ensure_ready(), return_exceptions=True
        )

        assert all(isinstance(r, NotStartedError) for r in results)
        assert client._pending_init is None


class TestDocuments:
    async def test_tracked_without_notification_before_ready(self) -> None:
        client, fake = make_client()

        await client.open_document(URI, "yaml", "a: 1")
        await client.update_document(URI, "a: 2")
        await client.close_document(URI)

        assert fake.notifications == []
        assert client.get_document(URI) is None

    async def test_open_sends_did_open(self) -> None:
        client, fake = await ready_client()

        doc = await client.open_document(URI, "yaml", "a: 1")

        assert doc.version == 1
        assert fake.notified("textDocument/didOpen") == [{
            "textDocument": {"uri": URI, "languageId": "yaml", "version": 1, "text": "a: 1"},
        }]

    async def test_update_sends_full_range_change(self) -> None:
        client, fake = await ready_client()
        await client.open_document(URI, "yaml", "a: 1")

        doc = await client.update_document(URI, "a: 1\nb: 2")

        assert doc.version == 2
        assert doc.line_count == 2
        assert fake.notified("textDocument/didChange") == [{
            "textDocument": {"uri": URI, "version": 2},
            "contentChanges": [{
                "range": {
                    "start": {"line": 0, "character": 0},
                    "end": {"line": 0, "character": 4},
                },
                "text": "a: 1\nb: 2",
            }],
        }]

    async def test_update_unknown_document_raises(self) -> None:
        client, fake = await ready_client()

        with pytest.raises(DocumentNotFoundError) as exc_info:
            await client.update_document("file:///w/other.yml", "x")

        assert exc_info.value.uri == "file:///w/other.yml"
        assert fake.notifications == []

    async def test_reopen_resets_version(self) -> None:
        client, _ = await ready_client()
        await client.open_document(URI, "yaml", "a: 1")
        await client.update_document(URI, "a: 2")

        doc = await client.open_document(URI, "yaml", "a: 3")

        assert doc.version == 1
        assert client.documents[URI] is doc

    async def test_close_sends_did_close(self) -> None:
        client, fake = await ready_client()
        await client.open_document(URI, "yaml", "a: 1")

        await client.close_document(URI)
        await client.close_document("file:///w/never-opened.yml")

        assert client.documents == {}
        assert fake.notified("textDocument/didClose") == [
            {"textDocument": {"uri": URI}},
            {"textDocument": {"uri": "file:///w/never-opened.yml"}},
        ]


class TestRequests:
    @pytest.mark.parametrize(
        "call",
        [
            lambda c: c.get_completions(URI, 0, 0),
            lambda c: c.get_hover(URI, 0, 0),
            lambda c: c.get_definition(URI, 0, 0),
            lambda c: c.get_diagnostics(URI),
        ],
        ids=["completion", "hover", "definition", "diagnostic"],
    )
    async def test_requires_ready(self, call) -> None:
        client, fake = make_client()

        with pytest.raises(NotInitializedError, match="not initialized"):
            await call(client)

        assert fake.requests == []

    async def test_results_returned_verbatim(self) -> None:
        completion = {"isIncomplete": False, "items": [{"label": "hosts"}]}
        hover = {"contents": {"kind": "markdown", "value": "doc"}}
        definition = [{"uri": URI, "range": {"start": {"line": 1, "character": 0},
                                             "end": {"line": 1, "character": 3}}}]
        client, fake = await ready_client({
            "textDocument/completion": completion,
            "textDocument/hover": hover,
            "textDocument/definition": definition,
        })

        assert await client.get_completions(URI, 1, 2) == completion
        assert await client.get_hover(URI, 1, 2) == hover
        assert await client.get_definition(URI, 1, 2) == definition
        assert fake.requested("textDocument/hover") == [
            {"textDocument": {"uri": URI}, "position": {"line": 1, "character": 2}},
        ]

    async def test_null_results(self) -> None:
        client, _ = await ready_client()
        assert await client.get_hover(URI, 0, 0) is None
        assert await client.get_completions(URI, 0, 0) is None

    @pytest.mark.parametrize(
        ("report", "expected"),
        [
            ({"kind": "full", "items": [{"message": "bad"}]}, [{"message": "bad"}]),
            ({"kind": "full", "items": []}, []),
            ({"kind": "unchanged", "resultId": "1"}, []),
            ({"kind": "full"}, []),
            (None, []),
        ],
    )
    async def test_diagnostics_normalized(self, report, expected) -> None:
        client, fake = await ready_client({"textDocument/diagnostic": report})

        assert await client.get_diagnostics(URI) == expected
        assert fake.requested("textDocument/diagnostic") == [{"textDocument": {"uri": URI}}]

    @pytest.mark.parametrize(("line", "character"), [(-1, 0), (0, -1)])
    async def test_negative_position_rejected(self, line: int, character: int) -> None:
        client, fake = await ready_client()

        with pytest.raises(InvalidPositionError) as exc_info:
            await client.get_hover(URI, line, character)

        assert isinstance(exc_info.value, LSPClientError)
        assert isinstance(exc_info.value, ValueError)
        assert fake.requested("textDocument/hover") == []

    async def test_protocol_error_propagates(self) -> None:
        client, _ = await ready_client({"textDocument/definition": ProtocolError(-32602, "bad")})

        with pytest.raises(ProtocolError) as exc_info:
            await client.get_definition(URI, 0, 0)
        assert exc_info.value.code == -32602
