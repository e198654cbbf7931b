"""EPUB parser: zip container -> package document -> spine -> blocks."""

from __future__ import annotations

import io
import logging
import re
import warnings
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Iterator, Optional

from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning
from lxml import etree

warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

from pagemark.library.models import Block, BookContent, Chapter

from .base import BaseParser, MalformedArchive, UnsupportedContent
from .blockwalk import BlockWalker
from .resources import ResourceResolver, resolve_path

log = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
PACKAGE_MEDIA_TYPE = "application/oebps-package+xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"

# Spine entries with these media types are never chapter documents.
_NON_DOCUMENT_PREFIXES = ("image/", "audio/", "video/", "font/", "text/css")

_HEADINGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
_MAX_TITLE_LENGTH = 200

_XML_PARSER = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)

# what ZipFile.read raises for a missing, corrupt, encrypted or unsupported entry
_ZIP_READ_ERRORS = (
    KeyError,
    zipfile.BadZipFile,
    zlib.error,
    RuntimeError,
    NotImplementedError,
    OSError,
)


@dataclass
class ManifestItem:
    id: str
    path: str  # resolved against the package document
    media_type: str = ""
    properties: frozenset[str] = frozenset()


@dataclass
class Package:
    path: str
    root: etree._Element
    manifest: dict[str, ManifestItem] = field(default_factory=dict)
    spine: list[str] = field(default_factory=list)
    toc_id: Optional[str] = None

    def media_types(self) -> dict[str, str]:
        return {item.path: item.media_type for item in self.manifest.values()}


@dataclass
class EpubMetadata:
    title: str = ""
    author: str = ""
    cover: str = ""  # data url


# ── XML helpers (namespace agnostic) ───────────────────


def _local(el: etree._Element) -> str:
    if not isinstance(el.tag, str):
        return ""
    return etree.QName(el).localname


def _iter_named(root: etree._Element, name: str) -> Iterator[etree._Element]:
    for el in root.iter():
        if _local(el) == name:
            yield el


def _first_named(root: etree._Element, name: str) -> Optional[etree._Element]:
    return next(_iter_named(root, name), None)


def _child_named(el: etree._Element, name: str) -> Optional[etree._Element]:
    for child in el:
        if _local(child) == name:
            return child
    return None


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _read_xml(zf: zipfile.ZipFile, path: str) -> Optional[etree._Element]:
    try:
        raw = zf.read(path)
    except _ZIP_READ_ERRORS as e:
        log.debug("Unreadable entry %s: %s", path, e)
        return None
    try:
        return etree.fromstring(raw, _XML_PARSER)
    except etree.XMLSyntaxError as e:
        log.debug("Unparsable XML %s: %s", path, e)
        return None


def _is_document(media_type: str) -> bool:
    return not media_type.lower().startswith(_NON_DOCUMENT_PREFIXES)


class EpubParser(BaseParser):
    FORMAT = "epub"
    SUPPORTED_EXTENSIONS = (".epub",)

    def parse(self, data: bytes) -> BookContent:
        with self._open(data) as zf:
            package = self._read_package(zf)
            toc = self.read_toc(zf, package)
            resolver = ResourceResolver(zf, package.media_types())

            blocks: list[Block] = []
            chapters: list[Chapter] = []
            walker = BlockWalker(blocks)

            for idref in package.spine:
                item = package.manifest.get(idref)
                if item is None:
                    log.warning("Spine item %r not found in manifest, skipping", idref)
                    continue
                if not _is_document(item.media_type):
                    log.warning(
                        "Spine item %r has non-document type %s, skipping",
                        idref,
                        item.media_type,
                    )
                    continue
                chapters.append(
                    self._parse_chapter(zf, item, len(chapters), toc, resolver, walker)
                )

        if not blocks:
            raise UnsupportedContent(
                "No readable content found; the file may be empty or unsupported"
            )
        if resolver.missing:
            log.info("%d bundled resources were missing", len(resolver.missing))
        log.debug("Parsed %d blocks in %d chapters", len(blocks), len(chapters))
        return BookContent(blocks=blocks, chapters=chapters)

    def read_metadata(self, data: bytes) -> EpubMetadata:
        """Title, author and cover. Never raises; missing fields stay empty."""
        meta = EpubMetadata()
        try:
            with self._open(data) as zf:
                package = self._read_package(zf)
                metadata = _first_named(package.root, "metadata")
                if metadata is not None:
                    for name in ("title", "creator"):
                        el = _first_named(metadata, name)
                        if el is not None and el.text and el.text.strip():
                            value = _clean_text(el.text)
                            if name == "title":
                                meta.title = value
                            else:
                                meta.author = value
                meta.cover = self._read_cover(zf, package, metadata)
        except (MalformedArchive, *_ZIP_READ_ERRORS) as e:
            log.warning("EPUB metadata extraction failed: %s", e)
        return meta

    # ── Container & package ────────────────────────────

    @staticmethod
    def _open(data: bytes) -> zipfile.ZipFile:
        try:
            return zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as e:
            raise MalformedArchive(f"Not a zip archive: {e}") from e

    def _read_package(self, zf: zipfile.ZipFile) -> Package:
        container = _read_xml(zf, CONTAINER_PATH)
        if container is None:
            raise MalformedArchive(f"Cannot find {CONTAINER_PATH}")

        rootfiles = [
            el for el in _iter_named(container, "rootfile") if el.get("full-path")
        ]
        if not rootfiles:
            raise MalformedArchive("container.xml has no rootfile")
        preferred = [el for el in rootfiles if el.get("media-type") == PACKAGE_MEDIA_TYPE]
        opf_path = (preferred or rootfiles)[0].get("full-path").lstrip("/")

        root = _read_xml(zf, opf_path)
        if root is None:
            raise MalformedArchive(f"Cannot read package document: {opf_path}")

        manifest_el = _first_named(root, "manifest")
        spine_el = _first_named(root, "spine")
        if manifest_el is None:
            raise MalformedArchive("Package document has no manifest")
        if spine_el is None:
            raise MalformedArchive("Package document has no spine")

        package = Package(path=opf_path, root=root, toc_id=spine_el.get("toc"))
        for item in manifest_el:
            if _local(item) != "item":
                continue
            item_id = item.get("id")
            href = item.get("href")
            if not item_id or not href:
                continue
            package.manifest[item_id] = ManifestItem(
                id=item_id,
                path=resolve_path(opf_path, href),
                media_type=item.get("media-type", ""),
                properties=frozenset(item.get("properties", "").split()),
            )
        for itemref in spine_el:
            if _local(itemref) == "itemref" and itemref.get("idref"):
                package.spine.append(itemref.get("idref"))

        log.debug(
            "Package %s: %d manifest items, %d spine items",
            opf_path,
            len(package.manifest),
            len(package.spine),
        )
        return package

    # ── Table of contents ──────────────────────────────

    def read_toc(self, zf: zipfile.ZipFile, package: Package) -> dict[str, str]:
        """Map chapter document path -> title. Nav titles win over NCX."""
        titles: dict[str, str] = {}
        for strategy in (self._nav_entries, self._ncx_entries):
            try:
                entries = strategy(zf, package)
            except (ValueError, etree.LxmlError, *_ZIP_READ_ERRORS) as e:
                log.debug("TOC strategy %s failed: %s", strategy.__name__, e)
                continue
            for path, title in entries:
                titles.setdefault(path, title)
        return titles

    def _nav_entries(
        self, zf: zipfile.ZipFile, package: Package
    ) -> list[tuple[str, str]]:
        nav_item = next(
            (i for i in package.manifest.values() if "nav" in i.properties), None
        )
        if nav_item is None:
            return []
        try:
            raw = zf.read(nav_item.path)
        except _ZIP_READ_ERRORS as e:
            log.debug("Nav document %s unreadable: %s", nav_item.path, e)
            return []

        soup = BeautifulSoup(raw, "lxml")
        navs = soup.find_all("nav")
        toc_nav = next(
            (n for n in navs if "toc" in str(n.get("epub:type", "")).split()), None
        )
        if toc_nav is None:
            toc_nav = navs[0] if navs else None
        if toc_nav is None:
            return []

        entries: list[tuple[str, str]] = []
        for a in toc_nav.find_all("a", href=True):
            title = _clean_text(a.get_text(" "))
            if title:
                entries.append((resolve_path(nav_item.path, a["href"]), title))
        return entries

    def _ncx_entries(
        self, zf: zipfile.ZipFile, package: Package
    ) -> list[tuple[str, str]]:
        ncx_item = package.manifest.get(package.toc_id or "")
        if ncx_item is None:
            ncx_item = next(
                (
                    i
                    for i in package.manifest.values()
                    if i.media_type == NCX_MEDIA_TYPE
                ),
                None,
            )
        if ncx_item is None:
            return []
        root = _read_xml(zf, ncx_item.path)
        if root is None:
            return []

        entries: list[tuple[str, str]] = []
        for point in _iter_named(root, "navPoint"):
            label = _child_named(point, "navLabel")
            text_el = _first_named(label, "text") if label is not None else None
            content = _child_named(point, "content")
            if text_el is None or content is None or not content.get("src"):
                continue
            title = _clean_text("".join(text_el.itertext()))
            if title:
                entries.append((resolve_path(ncx_item.path, content.get("src")), title))
        return entries

    # ── Chapters ───────────────────────────────────────

    def _parse_chapter(
        self,
        zf: zipfile.ZipFile,
        item: ManifestItem,
        index: int,
        toc: dict[str, str],
        resolver: ResourceResolver,
        walker: BlockWalker,
    ) -> Chapter:
        start = len(walker.blocks)
        title, source = f"Chapter {index + 1}", "fallback"
        try:
            raw = zf.read(item.path)
            soup = BeautifulSoup(raw, "lxml")
            title, source = self._chapter_title(soup, item.path, toc, index)
            missing = resolver.rewrite_document(soup, item.path)
            if missing:
                log.warning("%s: %d missing resources", item.path, missing)

            root = soup.body or soup
            walker.walk(root)
            if len(walker.blocks) == start:
                walker.fallback(root)
        except Exception:
            # recorded as an empty chapter, the rest of the book still parses
            log.warning(
                "Chapter %d (%s) failed to parse", index + 1, item.path, exc_info=True
            )
            title, source = f"{title} (parse failed)", "failed"

        end = len(walker.blocks)
        log.debug(
            "Chapter %d %r [%s] blocks %d-%d", index + 1, title, source, start, end
        )
        return Chapter(
            id=f"ch-{index}",
            title=title,
            index=index,
            block_start_index=start,
            block_end_index=end,
            title_source=source,
        )

    @staticmethod
    def _chapter_title(
        soup: BeautifulSoup, path: str, toc: dict[str, str], index: int
    ) -> tuple[str, str]:
        if path in toc:
            return toc[path], "toc"

        title_el = soup.find("title")
        if title_el is not None:
            text = _clean_text(title_el.get_text(" "))
            if text and len(text) <= _MAX_TITLE_LENGTH:
                return text, "title"

        heading = soup.find(_HEADINGS)
        if heading is not None:
            text = _clean_text(heading.get_text(" "))
            if text and len(text) <= _MAX_TITLE_LENGTH:
                return text, "heading"

        return f"Chapter {index + 1}", "fallback"

    def _read_cover(
        self,
        zf: zipfile.ZipFile,
        package: Package,
        metadata: Optional[etree._Element],
    ) -> str:
        candidates: list[ManifestItem] = []

        if metadata is not None:
            for meta in _iter_named(metadata, "meta"):
                if meta.get("name") == "cover" and meta.get("content"):
                    item = package.manifest.get(meta.get("content"))
                    if item is not None:
                        candidates.append(item)
        candidates.extend(
            i for i in package.manifest.values() if "cover-image" in i.properties
        )
        for item_id in ("cover-image", "cover"):
            if item_id in package.manifest:
                candidates.append(package.manifest[item_id])
        candidates.extend(
            i for i in package.manifest.values() if i.media_type.startswith("image/")
        )

        resolver = ResourceResolver(zf, package.media_types())
        for item in candidates:
            if not item.media_type.startswith("image/"):
                continue
            url = resolver.data_url(item.path)
            if url:
                return url
        return ""
