"""Convert an HTML element tree into blocks.

Every element falls into one category of a closed set. The category table is
plain data; the walk is a recursive descent that dispatches on the category:

* ``SKIP``      non-content (style, script, head ...), ignored with children
* ``MEDIA``     img / video / svg, emitted as image or video blocks
* ``CONTENT``   p, headings, blockquote, pre, li, td, th: one markup block
                with the element's inner markup, children are not re-walked
* ``CONTAINER`` everything else, walked child by child
* ``LEAF``      an element with text whose children are all inline (or that
                has no children): kept whole as a markup block

Content elements without text are walked as containers so that images
inside empty paragraphs are still found.
"""

from __future__ import annotations

import enum
from typing import Callable, Iterable, Optional, Union

from bs4 import NavigableString, Tag
from bs4.element import PreformattedString

from pagemark.library.models import (
    Block,
    ImageBlock,
    MarkupBlock,
    VideoBlock,
)

from .resources import MISSING_ATTR


class Category(enum.Enum):
    SKIP = "skip"
    MEDIA = "media"
    CONTENT = "content"
    CONTAINER = "container"
    LEAF = "leaf"


CATEGORIES: dict[str, Category] = {
    **dict.fromkeys(
        ["style", "script", "meta", "link", "title", "head", "noscript", "template"],
        Category.SKIP,
    ),
    **dict.fromkeys(["img", "video", "svg"], Category.MEDIA),
    **dict.fromkeys(
        ["p", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre", "li", "td", "th"],
        Category.CONTENT,
    ),
    **dict.fromkeys(
        [
            "html", "body", "div", "section", "article", "main", "header",
            "footer", "aside", "nav", "figure", "ul", "ol", "dl", "table",
            "thead", "tbody", "tfoot", "tr", "caption",
        ],
        Category.CONTAINER,
    ),
}

# Phrasing elements that may sit inside a run of text without breaking it.
INLINE_TAGS = frozenset(
    [
        "a", "abbr", "b", "bdi", "bdo", "br", "cite", "code", "data", "del",
        "dfn", "em", "font", "i", "ins", "kbd", "mark", "q", "rb", "rp", "rt",
        "ruby", "s", "samp", "small", "span", "strike", "strong", "sub", "sup",
        "time", "tt", "u", "var", "wbr",
    ]
)

FALLBACK_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "div", "span"]

Node = Union[Tag, NavigableString]


def local_name(el: Tag) -> str:
    name = (el.name or "").lower()
    return name.rsplit(":", 1)[-1]


def _is_text(node: object) -> bool:
    # comments, CDATA, doctypes are PreformattedString subclasses
    return isinstance(node, NavigableString) and not isinstance(
        node, PreformattedString
    )


def _has_text(el: Tag) -> bool:
    return bool(el.get_text(strip=True))


def _child_tags(el: Tag) -> list[Tag]:
    return [c for c in el.children if isinstance(c, Tag)]


def categorize(el: Tag) -> Category:
    name = local_name(el)
    category = CATEGORIES.get(name, Category.CONTAINER)
    if category in (Category.SKIP, Category.MEDIA):
        return category
    if category is Category.CONTENT:
        return Category.CONTENT if _has_text(el) else Category.CONTAINER

    if not _has_text(el):
        return Category.CONTAINER
    children = _child_tags(el)
    if not children or all(local_name(c) in INLINE_TAGS for c in children):
        return Category.LEAF
    return Category.CONTAINER


class BlockWalker:
    """Appends blocks for an element tree to a shared block list.

    Block ids are positional (``b-<index>``), so they stay unique across all
    chapters written into the same list.
    """

    def __init__(self, blocks: list[Block]) -> None:
        self.blocks = blocks
        self._handlers: dict[Category, Callable[[Tag], None]] = {
            Category.SKIP: self._skip,
            Category.MEDIA: self._media,
            Category.CONTENT: self._markup,
            Category.LEAF: self._markup,
            Category.CONTAINER: self._container,
        }

    def _next_id(self) -> str:
        return f"b-{len(self.blocks)}"

    def walk(self, root: Tag) -> tuple[int, int]:
        """Walk ``root`` and return the ``[start, end)`` bounds it produced."""
        start = len(self.blocks)
        self.visit(root)
        return start, len(self.blocks)

    def visit(self, el: Tag) -> None:
        self._handlers[categorize(el)](el)

    def fallback(self, root: Tag) -> tuple[int, int]:
        """Broad pass collecting every paragraph-like element with text."""
        start = len(self.blocks)
        for el in root.find_all(FALLBACK_TAGS):
            html = el.decode_contents().strip()
            if html and _has_text(el):
                self.blocks.append(
                    MarkupBlock(id=self._next_id(), html=html, tag=local_name(el))
                )
        return start, len(self.blocks)

    # ── Handlers ───────────────────────────────────────

    def _skip(self, el: Tag) -> None:
        pass

    def _markup(self, el: Tag) -> None:
        html = el.decode_contents().strip()
        if html:
            self.blocks.append(
                MarkupBlock(id=self._next_id(), html=html, tag=local_name(el))
            )

    def _media(self, el: Tag) -> None:
        name = local_name(el)
        if name == "img":
            self._image(el, el.get("src"), el.get("alt"))
        elif name == "video":
            self._video(el)
        else:
            image = el.find(lambda t: local_name(t) == "image")
            if image is not None:
                self._image(image, image.get("href") or image.get("xlink:href"), None)

    def _image(self, el: Tag, src: object, alt: object) -> None:
        if not isinstance(src, str) or not src:
            return
        self.blocks.append(
            ImageBlock(
                id=self._next_id(),
                src=src,
                alt=alt if isinstance(alt, str) and alt else None,
                missing=el.has_attr(MISSING_ATTR),
            )
        )

    def _video(self, el: Tag) -> None:
        src = el.get("src")
        if not src:
            source = el.find("source", src=True)
            src = source.get("src") if source is not None else None
        if not isinstance(src, str) or not src:
            return
        poster = el.get("poster")
        self.blocks.append(
            VideoBlock(
                id=self._next_id(),
                src=src,
                poster=poster if isinstance(poster, str) and poster else None,
            )
        )

    def _container(self, el: Tag) -> None:
        run: list[Node] = []
        for child in el.children:
            if _is_text(child) or (
                isinstance(child, Tag) and local_name(child) in INLINE_TAGS
            ):
                run.append(child)
                continue
            self._flush_run(el, run)
            run = []
            if isinstance(child, Tag):
                self.visit(child)
        self._flush_run(el, run)

    def _flush_run(self, parent: Tag, run: Iterable[Node]) -> None:
        """Emit loose text between block children so it is not dropped."""
        nodes = list(run)
        if not nodes:
            return
        text = "".join(
            n.get_text() if isinstance(n, Tag) else str(n) for n in nodes
        ).strip()
        if text:
            html = "".join(str(n) for n in nodes).strip()
            self.blocks.append(
                MarkupBlock(id=self._next_id(), html=html, tag=local_name(parent))
            )
            return
        # no text, but an inline wrapper may still hold media
        for n in nodes:
            if isinstance(n, Tag):
                self.visit(n)


def walk_blocks(root: Tag, blocks: Optional[list[Block]] = None) -> list[Block]:
    """Convenience wrapper: walk ``root`` into a fresh (or given) list."""
    if blocks is None:
        blocks = []
    BlockWalker(blocks).walk(root)
    return blocks
