"""Archive path resolution and embedding of bundled resources."""

from __future__ import annotations

import base64
import logging
import mimetypes
import posixpath
import re
import zipfile
from typing import Optional
from urllib.parse import unquote

from bs4 import BeautifulSoup, Tag

log = logging.getLogger(__name__)

MISSING_ATTR = "data-resource-missing"

# Visible stand-in for a bundled resource that could not be read.
MISSING_RESOURCE_SRC = "data:image/svg+xml;base64," + base64.b64encode(
    b'<svg xmlns="http://www.w3.org/2000/svg" width="160" height="90" '
    b'viewBox="0 0 160 90"><rect width="160" height="90" fill="#eee" '
    b'stroke="#999" stroke-dasharray="4"/><text x="80" y="50" font-size="12" '
    b'text-anchor="middle" fill="#666">resource missing</text></svg>'
).decode("ascii")

_EXTERNAL_REF = re.compile(r"^(?:[a-z][a-z0-9+.-]*:|//)", re.IGNORECASE)
_CSS_URL = re.compile(r"""url\(\s*(['"]?)([^'")]*?)\1\s*\)""", re.IGNORECASE)

_EXT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}


def is_external(ref: str) -> bool:
    """True for remote, embedded or otherwise absolute (scheme) references."""
    return bool(_EXTERNAL_REF.match(ref.strip()))


def split_fragment(href: str) -> str:
    """Drop ``#fragment`` and ``?query`` from an href."""
    return href.split("#", 1)[0].split("?", 1)[0]


def resolve_path(base_file: str, href: str) -> str:
    """Resolve ``href`` relative to the archive entry ``base_file``.

    Leading ``/`` means archive root. ``..`` above the root is dropped.
    """
    path = unquote(split_fragment(href.strip()))
    if path.startswith("/"):
        joined = path
    else:
        joined = posixpath.join(posixpath.dirname(base_file), path)

    parts: list[str] = []
    for part in joined.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if parts:
                parts.pop()
            continue
        parts.append(part)
    return "/".join(parts)


def guess_media_type(path: str) -> str:
    ext = posixpath.splitext(path)[1].lower()
    if ext in _EXT_TYPES:
        return _EXT_TYPES[ext]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


class ResourceResolver:
    """Turns archive references into self-contained ``data:`` URLs.

    Each entry is read and encoded at most once per resolver.
    """

    def __init__(
        self,
        zf: zipfile.ZipFile,
        media_types: Optional[dict[str, str]] = None,
    ) -> None:
        self._zf = zf
        self._media_types = media_types or {}
        self._cache: dict[str, Optional[str]] = {}
        self.missing: list[str] = []

    def data_url(self, path: str) -> Optional[str]:
        """Return the entry at ``path`` as a data url, or None if unreadable."""
        if path in self._cache:
            return self._cache[path]
        url: Optional[str]
        try:
            raw = self._zf.read(path)
        except (KeyError, zipfile.BadZipFile, OSError, RuntimeError) as e:
            log.warning("Resource missing from archive: %s (%s)", path, e)
            self.missing.append(path)
            url = None
        else:
            media_type = self._media_types.get(path) or guess_media_type(path)
            url = f"data:{media_type};base64,{base64.b64encode(raw).decode('ascii')}"
        self._cache[path] = url
        return url

    def resolve(self, doc_path: str, ref: str) -> tuple[str, bool]:
        """Resolve one reference found in ``doc_path``.

        Returns ``(new_ref, found)``. External refs come back unchanged.
        """
        if not ref or is_external(ref) or ref.startswith("#"):
            return ref, True
        path = resolve_path(doc_path, ref)
        url = self.data_url(path)
        if url is None:
            return MISSING_RESOURCE_SRC, False
        return url, True

    # ── Document rewriting ─────────────────────────────

    _REF_ATTRS: tuple[tuple[str, tuple[str, ...]], ...] = (
        ("img", ("src",)),
        ("image", ("href", "xlink:href")),
        ("video", ("src", "poster")),
        ("source", ("src",)),
    )

    def rewrite_document(self, soup: BeautifulSoup, doc_path: str) -> int:
        """Embed every resource referenced from ``soup``. Returns the number
        of references that could not be resolved."""
        missing = 0
        for tag_name, attrs in self._REF_ATTRS:
            for el in soup.find_all(tag_name):
                for attr in attrs:
                    ref = el.get(attr)
                    if not isinstance(ref, str) or not ref:
                        continue
                    new_ref, found = self.resolve(doc_path, ref)
                    el[attr] = new_ref
                    if not found:
                        missing += 1
                        self._mark_missing(el, resolve_path(doc_path, ref))

        for el in soup.find_all(style=True):
            style = el.get("style")
            if isinstance(style, str) and "url(" in style.lower():
                missing += self._rewrite_style(el, style, doc_path)
        return missing

    def _rewrite_style(self, el: Tag, style: str, doc_path: str) -> int:
        missing_paths: list[str] = []

        def _sub(match: re.Match) -> str:
            ref = match.group(2)
            new_ref, found = self.resolve(doc_path, ref)
            if not found:
                missing_paths.append(resolve_path(doc_path, ref))
            if new_ref == ref:
                return match.group(0)
            return f'url("{new_ref}")'

        el["style"] = _CSS_URL.sub(_sub, style)
        for path in missing_paths:
            self._mark_missing(el, path)
        return len(missing_paths)

    @staticmethod
    def _mark_missing(el: Tag, path: str) -> None:
        el[MISSING_ATTR] = path
        if el.name == "img" and not el.get("alt"):
            el["alt"] = f"Missing image: {path}"
