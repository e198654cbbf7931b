"""Base parser interface for all ebook formats."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pagemark.library.models import BookContent


class ParseError(Exception):
    """Base class for fatal import parse failures."""


class MalformedArchive(ParseError):
    """The file's structural prerequisites are missing or unreadable."""


class UnsupportedContent(ParseError):
    """The file opened fine but produced no readable blocks."""


class UnsupportedFormat(ValueError):
    pass


class BaseParser(ABC):
    """Abstract base for format-specific parsers."""

    FORMAT: str = ""
    SUPPORTED_EXTENSIONS: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, data: bytes) -> BookContent:
        """Parse raw file bytes and return the stored content structure."""

    @classmethod
    def can_handle(cls, file_name: str) -> bool:
        name = file_name.lower()
        return any(name.endswith(ext) for ext in cls.SUPPORTED_EXTENSIONS)

    @classmethod
    def strip_extension(cls, file_name: str) -> str:
        name = file_name.lower()
        for ext in cls.SUPPORTED_EXTENSIONS:
            if name.endswith(ext):
                return file_name[: -len(ext)]
        return file_name


def get_parser(file_name: str, **options) -> BaseParser:
    """Return the appropriate parser for a file name."""
    from pagemark.parsers.epub_parser import EpubParser
    from pagemark.parsers.txt_parser import GzipTxtParser, TxtParser

    # .txt.gz must be checked before anything matching a plain suffix
    parsers: list[type[BaseParser]] = [
        GzipTxtParser,
        EpubParser,
        TxtParser,
    ]
    for parser_cls in parsers:
        if parser_cls.can_handle(file_name):
            if issubclass(parser_cls, TxtParser):
                return parser_cls(**options)
            return parser_cls()

    supported = []
    for p in parsers:
        supported.extend(p.SUPPORTED_EXTENSIONS)
    suffix = file_name.rsplit(".", 1)[-1] if "." in file_name else ""
    raise UnsupportedFormat(
        f"Unsupported format: .{suffix}. Supported: {', '.join(supported)}"
    )
