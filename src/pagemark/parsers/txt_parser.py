"""Plain text parser."""

from __future__ import annotations

import gzip
import logging
import re
import zlib
from typing import Iterable, Optional

from pagemark.library.models import Block, BookContent, ParagraphBlock

from .base import BaseParser, MalformedArchive
from .encoding import DEFAULT_ENCODINGS, DEFAULT_REPLACEMENT_THRESHOLD, decode_text

log = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def ingest(text: str) -> list[Block]:
    """Split text into one paragraph block per line, blank lines included."""
    if not text:
        return []
    lines = _LINE_BREAK.split(text)
    # a terminating line break ends the last line, it does not open a new one
    if lines[-1] == "":
        lines.pop()
    return [ParagraphBlock(id=f"p-{i}", text=line) for i, line in enumerate(lines)]


class TxtParser(BaseParser):
    FORMAT = "txt"
    SUPPORTED_EXTENSIONS = (".txt", ".text")

    def __init__(
        self,
        encodings: Optional[Iterable[str]] = None,
        replacement_threshold: float = DEFAULT_REPLACEMENT_THRESHOLD,
    ) -> None:
        self._encodings = tuple(encodings) if encodings else DEFAULT_ENCODINGS
        self._threshold = replacement_threshold

    def parse(self, data: bytes) -> BookContent:
        text = decode_text(data, self._encodings, self._threshold)
        return BookContent(blocks=ingest(text))


class GzipTxtParser(TxtParser):
    SUPPORTED_EXTENSIONS = (".txt.gz",)

    def parse(self, data: bytes) -> BookContent:
        try:
            raw = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise MalformedArchive(f"Not a valid gzip stream: {e}") from e
        log.debug("Decompressed %d -> %d bytes", len(data), len(raw))
        return super().parse(raw)
