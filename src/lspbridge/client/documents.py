"""Client-side view of open documents.

Each update replaces the whole text, so the change sent to the server is
always a single range covering the previous content.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from lspbridge.protocol.types import Position, Range, TextDocumentContentChangeEvent, TextDocumentItem

# LSP recognises \n, \r\n and \r as line terminators
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def split_lines(text: str) -> list[str]:
    """Split text into lines without terminators; "" is one empty line."""
    return _LINE_BREAK.split(text)


def utf16_length(text: str) -> int:
    """Length of `text` in UTF-16 code units, the protocol's default character unit."""
    return len(text.encode("utf-16-le")) // 2


def end_position(text: str) -> Position:
    """Position just past the last character of `text`."""
    lines = split_lines(text)
    return Position(line=len(lines) - 1, character=utf16_length(lines[-1]))


@dataclass
class TrackedDocument:
    """The client's belief about one open file.

    Attributes:
        uri: Document URI; unique key in the client's mapping.
        language_id: Language identifier sent with didOpen.
        version: Starts at 1 and increases by one on every update.
        text: Full current content.
    """

    uri: str
    language_id: str
    text: str
    version: int = 1

    @property
    def line_count(self) -> int:
        return len(split_lines(self.text))

    def full_range(self) -> Range:
        """Range spanning the entire current content."""
        return Range(start=Position(line=0, character=0), end=end_position(self.text))

    def replace(self, text: str) -> TextDocumentContentChangeEvent:
        """Replace the content, bump the version, and describe the change.

        Returns:
            The change event covering the content that was replaced.
        """
        change = TextDocumentContentChangeEvent(range=self.full_range(), text=text)
        self.text = text
        self.version += 1
        return change

    def to_item(self) -> TextDocumentItem:
        return TextDocumentItem(
            uri=self.uri,
            language_id=self.language_id,
            version=self.version,
            text=self.text,
        )
