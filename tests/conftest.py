"""Root pytest configuration for all tests."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio

from lspbridge.client.engine import LSPClient
from lspbridge.config import reset_config
from lspbridge.config.schema import ServerConfig

from tests.utils import STUB_SERVER

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def _fresh_config() -> Iterator[None]:
    reset_config()
    yield
    reset_config()


@pytest.fixture
def stub_config(tmp_path: Path) -> ServerConfig:
    """ServerConfig that launches the stub language server under this interpreter."""
    return ServerConfig(
        command=sys.executable,
        args=[str(STUB_SERVER)],
        workspace_path=str(tmp_path),
    )


@pytest_asyncio.fixture
async def client(stub_config: ServerConfig) -> AsyncIterator[LSPClient]:
    """Started and initialized client talking to the stub server."""
    lsp = LSPClient(stub_config)
    await lsp.start()
    await lsp.initialize()
    yield lsp
    await lsp.dispose()
