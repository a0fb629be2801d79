"""Parsers for subscription import files.

Two formats are understood:
- OPML (what YouTube's "export subscriptions" produced): every `<outline>` with
  an `xmlUrl` attribute is one URL.
- Plain URL lists: one URL per line, `#` starts a comment.

parse() probes the parsers in that order and uses the first one that accepts
the file.
"""

import re
from collections.abc import Iterator
from typing import IO, AnyStr
from xml.etree import ElementTree

from tubekeeper.domain.exceptions import ValidationException

COMMENT_PATTERN = re.compile(r"(^|\s)#.*")


class FormatNotSupportedError(ValidationException):
    """Raised when no parser understands an import file."""

    pass


def _decode(line: str | bytes) -> str:
    return line.decode("utf-8") if isinstance(line, bytes | bytearray) else line


class SubscriptionFileParser:
    """Base class of import file parsers."""

    def probe(self, file_handle: IO[AnyStr]) -> bool:
        """Check if the file looks like this parser's format."""
        return False

    def parse(self, file_handle: IO[AnyStr]) -> list[str]:
        """Return the subscription URLs of the file."""
        return []


class SubscriptionListFileParser(SubscriptionFileParser):
    """One URL per line, comments with #."""

    @staticmethod
    def _lines(file_handle: IO[AnyStr]) -> Iterator[str]:
        file_handle.seek(0)
        for raw in file_handle:
            line = COMMENT_PATTERN.sub("", _decode(raw)).strip()
            if line:
                yield line

    def probe(self, file_handle: IO[AnyStr]) -> bool:
        # First non-empty line decides
        for line in self._lines(file_handle):
            return line.startswith(("http://", "https://"))
        return False

    def parse(self, file_handle: IO[AnyStr]) -> list[str]:
        return list(self._lines(file_handle))


class OPMLParser(SubscriptionFileParser):
    """OPML outline files."""

    @staticmethod
    def _parse_tree(file_handle: IO[AnyStr]) -> ElementTree.Element | None:
        file_handle.seek(0)
        try:
            return ElementTree.parse(file_handle).getroot()
        except ElementTree.ParseError:
            return None

    def probe(self, file_handle: IO[AnyStr]) -> bool:
        root = self._parse_tree(file_handle)
        return root is not None and root.tag.lower() == "opml"

    def parse(self, file_handle: IO[AnyStr]) -> list[str]:
        root = self._parse_tree(file_handle)
        if root is None:
            return []
        return [node.get("xmlUrl", "") for node in root.iter("outline") if node.get("xmlUrl")]


PARSERS: tuple[SubscriptionFileParser, ...] = (OPMLParser(), SubscriptionListFileParser())


def parse(file_handle: IO[AnyStr]) -> list[str]:
    """Extract subscription URLs from an import file.

    Args:
        file_handle: Seekable text or binary file

    Raises:
        FormatNotSupportedError: No parser accepts the file
    """
    for parser in PARSERS:
        if parser.probe(file_handle):
            return parser.parse(file_handle)
    raise FormatNotSupportedError("This file cannot be parsed!")
