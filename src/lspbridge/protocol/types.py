"""LSP wire types for the messages this client sends.

Only the params the client builds are modelled; results from the server
are returned to callers as plain JSON values.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LspModel(BaseModel):
    """Base model for LSP types with populate_by_name enabled."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump using protocol (camelCase) names, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Position(LspModel):
    """Zero-based line and character offset (UTF-16 code units)."""

    line: int = Field(ge=0)
    character: int = Field(ge=0)


class Range(LspModel):
    start: Position
    end: Position


class TextDocumentIdentifier(LspModel):
    uri: str


class VersionedTextDocumentIdentifier(LspModel):
    uri: str
    version: int


class TextDocumentItem(LspModel):
    uri: str
    language_id: str = Field(alias="languageId")
    version: int
    text: str


class TextDocumentContentChangeEvent(LspModel):
    """One content change; a range of None means the text replaces everything."""

    range: Range | None = None
    text: str


class DidOpenTextDocumentParams(LspModel):
    text_document: TextDocumentItem = Field(alias="textDocument")


class DidChangeTextDocumentParams(LspModel):
    text_document: VersionedTextDocumentIdentifier = Field(alias="textDocument")
    content_changes: list[TextDocumentContentChangeEvent] = Field(alias="contentChanges")


class DidCloseTextDocumentParams(LspModel):
    text_document: TextDocumentIdentifier = Field(alias="textDocument")


class TextDocumentPositionParams(LspModel):
    """Params shared by completion, hover and definition requests."""

    text_document: TextDocumentIdentifier = Field(alias="textDocument")
    position: Position


class DocumentDiagnosticParams(LspModel):
    text_document: TextDocumentIdentifier = Field(alias="textDocument")
    identifier: str | None = None
    previous_result_id: str | None = Field(default=None, alias="previousResultId")


class StaticCapability(LspModel):
    """A capability the client supports without dynamic registration."""

    dynamic_registration: bool = Field(default=False, alias="dynamicRegistration")


class SynchronizationCapability(StaticCapability):
    did_save: bool = Field(default=False, alias="didSave")
    will_save: bool = Field(default=False, alias="willSave")


class TextDocumentClientCapabilities(LspModel):
    synchronization: SynchronizationCapability = Field(default_factory=SynchronizationCapability)
    hover: StaticCapability = Field(default_factory=StaticCapability)
    completion: StaticCapability = Field(default_factory=StaticCapability)
    definition: StaticCapability = Field(default_factory=StaticCapability)
    diagnostic: StaticCapability = Field(default_factory=StaticCapability)


class ClientCapabilities(LspModel):
    text_document: TextDocumentClientCapabilities = Field(
        default_factory=TextDocumentClientCapabilities, alias="textDocument"
    )
    workspace: dict[str, Any] = Field(default_factory=dict)


class ClientInfo(LspModel):
    name: str
    version: str | None = None


class WorkspaceFolder(LspModel):
    uri: str
    name: str


class InitializeParams(LspModel):
    process_id: int | None = Field(alias="processId")
    root_uri: str | None = Field(alias="rootUri")
    root_path: str | None = Field(default=None, alias="rootPath")
    capabilities: ClientCapabilities = Field(default_factory=ClientCapabilities)
    client_info: ClientInfo | None = Field(default=None, alias="clientInfo")
    workspace_folders: list[WorkspaceFolder] | None = Field(
        default=None, alias="workspaceFolders"
    )
    initialization_options: dict[str, Any] | None = Field(
        default=None, alias="initializationOptions"
    )

    def to_wire(self) -> dict[str, Any]:
        # processId and rootUri are required members even when null
        wire = super().to_wire()
        wire.setdefault("processId", self.process_id)
        wire.setdefault("rootUri", self.root_uri)
        return wire


# Server capability keys for the operations this client issues
PROVIDER_KEYS = {
    "completion": "completionProvider",
    "hover": "hoverProvider",
    "definition": "definitionProvider",
    "diagnostic": "diagnosticProvider",
}


def summarize_capabilities(capabilities: dict[str, Any]) -> dict[str, bool]:
    """Report which of the supported operations the server advertises.

    A provider counts as advertised when present and not false or null.
    """
    return {
        name: capabilities.get(key) not in (None, False)
        for name, key in PROVIDER_KEYS.items()
    }


def diagnostic_items(report: Any) -> list[dict[str, Any]]:
    """Normalize a textDocument/diagnostic result into a list of diagnostics.

    A full report yields its items; an unchanged report, a report without
    items, or a null result yields an empty list.
    """
    if not isinstance(report, dict):
        return []
    if report.get("kind") == "unchanged":
        return []
    items = report.get("items")
    if not isinstance(items, list):
        return []
    return items
