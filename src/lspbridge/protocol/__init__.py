"""LSP wire types and result helpers."""

from lspbridge.protocol.types import (
    ClientCapabilities,
    ClientInfo,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DocumentDiagnosticParams,
    InitializeParams,
    Position,
    Range,
    TextDocumentContentChangeEvent,
    TextDocumentIdentifier,
    TextDocumentItem,
    TextDocumentPositionParams,
    VersionedTextDocumentIdentifier,
    WorkspaceFolder,
    diagnostic_items,
    summarize_capabilities,
)

__all__ = [
    "ClientCapabilities",
    "ClientInfo",
    "DidChangeTextDocumentParams",
    "DidCloseTextDocumentParams",
    "DidOpenTextDocumentParams",
    "DocumentDiagnosticParams",
    "InitializeParams",
    "Position",
    "Range",
    "TextDocumentContentChangeEvent",
    "TextDocumentIdentifier",
    "TextDocumentItem",
    "TextDocumentPositionParams",
    "VersionedTextDocumentIdentifier",
    "WorkspaceFolder",
    "diagnostic_items",
    "summarize_capabilities",
]
