"""Data models for the book library."""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Union


# ── Blocks ─────────────────────────────────────────────


@dataclass
class ParagraphBlock:
    type: ClassVar[str] = "paragraph"

    id: str
    text: str  # plain text, already cleaned

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "text": self.text}


@dataclass
class MarkupBlock:
    type: ClassVar[str] = "markup"

    id: str
    html: str  # inner markup of the source element, verbatim
    tag: Optional[str] = None  # p, h1, li, td ...

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "id": self.id, "html": self.html}
        if self.tag:
            d["tag"] = self.tag
        return d


@dataclass
class ImageBlock:
    type: ClassVar[str] = "image"

    id: str
    src: str  # remote url or data: url
    alt: Optional[str] = None
    missing: bool = False  # src is a placeholder, the archive entry was not found

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "id": self.id, "src": self.src}
        if self.alt:
            d["alt"] = self.alt
        if self.missing:
            d["missing"] = True
        return d


@dataclass
class VideoBlock:
    type: ClassVar[str] = "video"

    id: str
    src: str
    poster: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "id": self.id, "src": self.src}
        if self.poster:
            d["poster"] = self.poster
        return d


@dataclass
class EmbedBlock:
    type: ClassVar[str] = "embed"

    id: str
    component: str
    props: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.type,
            "id": self.id,
            "component": self.component,
        }
        if self.props:
            d["props"] = self.props
        return d


Block = Union[ParagraphBlock, MarkupBlock, ImageBlock, VideoBlock, EmbedBlock]

_BLOCK_TYPES: dict[str, type] = {
    cls.type: cls
    for cls in (ParagraphBlock, MarkupBlock, ImageBlock, VideoBlock, EmbedBlock)
}


def block_from_dict(data: dict[str, Any]) -> Block:
    """Rebuild a block from its serialized form."""
    kind = data.get("type")
    cls = _BLOCK_TYPES.get(kind)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(f"Unknown block type: {kind!r}")
    fields = {k: v for k, v in data.items() if k != "type"}
    return cls(**fields)


# ── Chapters & content ─────────────────────────────────


@dataclass
class Chapter:
    """A named, contiguous range over the block sequence."""

    id: str
    title: str
    index: int
    block_start_index: int
    block_end_index: int  # exclusive
    title_source: str = ""  # toc, title, heading, fallback, failed

    @property
    def is_empty(self) -> bool:
        return self.block_end_index == self.block_start_index

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "index": self.index,
            "block_start_index": self.block_start_index,
            "block_end_index": self.block_end_index,
            "title_source": self.title_source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Chapter:
        return cls(
            id=data["id"],
            title=data["title"],
            index=data["index"],
            block_start_index=data["block_start_index"],
            block_end_index=data["block_end_index"],
            title_source=data.get("title_source", ""),
        )


@dataclass
class BookContent:
    """Stored book content: the block sequence plus optional chapter ranges."""

    blocks: list[Block] = field(default_factory=list)
    chapters: list[Chapter] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(
            {
                "__type": "blocks",
                "blocks": [b.to_dict() for b in self.blocks],
                "chapters": [c.to_dict() for c in self.chapters],
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str) -> BookContent:
        """Load stored content. Payloads that are not block documents are
        treated as plain text written by older versions."""
        try:
            data = json.loads(raw)
        except ValueError:
            data = None

        if (
            isinstance(data, dict)
            and data.get("__type") == "blocks"
            and isinstance(data.get("blocks"), list)
        ):
            blocks = [block_from_dict(b) for b in data["blocks"]]
            chapters = [Chapter.from_dict(c) for c in data.get("chapters") or []]
            return cls(blocks=blocks, chapters=chapters)

        from pagemark.parsers.txt_parser import ingest

        return cls(blocks=ingest(raw))


# ── Books & progress ───────────────────────────────────


@dataclass
class ReadingProgress:
    book_id: str
    para_offset: int = 0  # block index
    progress: float = 0.0  # 0 - 100, two decimals
    last_read_at: float = field(default_factory=time.time)
    reading_time: int = 0  # minutes
    current_chapter: Optional[str] = None
    session_start_time: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.session_start_time is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "book_id": self.book_id,
            "para_offset": self.para_offset,
            "progress": self.progress,
            "last_read_at": self.last_read_at,
            "reading_time": self.reading_time,
            "current_chapter": self.current_chapter,
            "session_start_time": self.session_start_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReadingProgress:
        return cls(
            book_id=data["book_id"],
            para_offset=data.get("para_offset", 0),
            progress=data.get("progress", 0.0),
            last_read_at=data.get("last_read_at", 0.0),
            reading_time=data.get("reading_time", 0),
            current_chapter=data.get("current_chapter"),
            session_start_time=data.get("session_start_time"),
        )


@dataclass
class Book:
    id: str  # SHA256 of file content
    title: str
    author: str = "Unknown"
    cover: str = ""  # data url, empty when the book has none
    format: str = ""  # epub, txt
    file_size: int = 0
    total_chapters: int = 0
    total_blocks: int = 0
    added_at: float = field(default_factory=time.time)
    last_read_at: Optional[float] = None
    total_time: int = 0  # minutes, all sessions
    read_count: int = 0
    reading_progress: Optional[ReadingProgress] = None

    @staticmethod
    def make_id(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()[:16]
