"""Shared fixtures for tests."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Optional

import pytest

from pagemark.config import AppConfig
from pagemark.library.database import Database
from pagemark.library.repository import Library
from pagemark.library.storage import BookStorage

# 1x1 transparent PNG
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)

CONTAINER_XML = """<?xml version="1.0"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>"""


def xhtml(body: str, title: str = "") -> str:
    head = f"<title>{title}</title>" if title else ""
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml" '
        'xmlns:epub="http://www.idpf.org/2007/ops">'
        f"<head>{head}</head><body>{body}</body></html>"
    )


def make_epub(
    chapters: list[tuple[str, str]],
    *,
    title: str = "Test Book",
    author: str = "Test Author",
    opf_path: str = "OEBPS/content.opf",
    nav: Optional[list[tuple[str, str]]] = None,
    ncx: Optional[list[tuple[str, str]]] = None,
    resources: Optional[dict[str, bytes]] = None,
    extra_manifest: str = "",
    extra_spine: str = "",
    include_container: bool = True,
) -> bytes:
    """Build an EPUB in memory.

    ``chapters`` are ``(href, xhtml)`` pairs relative to the package
    document; ``nav`` / ``ncx`` are ``(href, title)`` table of contents
    entries; ``resources`` maps archive paths relative to the package
    directory to their bytes.
    """
    base = opf_path.rsplit("/", 1)[0] + "/" if "/" in opf_path else ""
    resources = resources or {}

    manifest = []
    spine = []
    for i, (href, _) in enumerate(chapters):
        manifest.append(
            f'<item id="ch{i}" href="{href}" media-type="application/xhtml+xml"/>'
        )
        spine.append(f'<itemref idref="ch{i}"/>')
    for i, href in enumerate(resources):
        media_type = "image/png" if href.endswith(".png") else "application/octet-stream"
        manifest.append(f'<item id="res{i}" href="{href}" media-type="{media_type}"/>')
    if nav is not None:
        manifest.append(
            '<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" '
            'properties="nav"/>'
        )
    if ncx is not None:
        manifest.append(
            '<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>'
        )
    toc_attr = ' toc="ncx"' if ncx is not None else ""

    opf = f"""<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="uid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:identifier id="uid">test-book</dc:identifier>
    <dc:title>{title}</dc:title>
    <dc:creator>{author}</dc:creator>
  </metadata>
  <manifest>{''.join(manifest)}{extra_manifest}</manifest>
  <spine{toc_attr}>{''.join(spine)}{extra_spine}</spine>
</package>"""

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        if include_container:
            zf.writestr("META-INF/container.xml", CONTAINER_XML.format(opf=opf_path))
        zf.writestr(opf_path, opf)
        for href, content in chapters:
            zf.writestr(base + href, content)
        for href, data in resources.items():
            zf.writestr(base + href, data)
        if nav is not None:
            links = "".join(f'<li><a href="{h}">{t}</a></li>' for h, t in nav)
            zf.writestr(
                base + "nav.xhtml",
                xhtml(f'<nav epub:type="toc"><ol>{links}</ol></nav>'),
            )
        if ncx is not None:
            points = "".join(
                f'<navPoint id="np{i}" playOrder="{i + 1}">'
                f"<navLabel><text>{t}</text></navLabel>"
                f'<content src="{h}"/></navPoint>'
                for i, (h, t) in enumerate(ncx)
            )
            zf.writestr(
                base + "toc.ncx",
                '<?xml version="1.0"?>'
                '<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">'
                f"<navMap>{points}</navMap></ncx>",
            )
    return buf.getvalue()


def corrupt_entry(data: bytes, name: str, *, deflate: bool = False) -> bytes:
    """Flip one byte inside the stored data of archive entry ``name``.

    With ``deflate`` the entry is recompressed first, so the damage lands in
    the compressed stream instead of the plain bytes.
    """
    if deflate:
        out = io.BytesIO()
        with zipfile.ZipFile(io.BytesIO(data)) as src, zipfile.ZipFile(
            out, "w"
        ) as dst:
            for info in src.infolist():
                compression = info.compress_type
                if info.filename == name:
                    compression = zipfile.ZIP_DEFLATED
                dst.writestr(info.filename, src.read(info), compress_type=compression)
        data = out.getvalue()

    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo(name)
    offset = info.header_offset
    name_len = int.from_bytes(data[offset + 26 : offset + 28], "little")
    extra_len = int.from_bytes(data[offset + 28 : offset + 30], "little")
    pos = offset + 30 + name_len + extra_len + info.compress_size // 2
    damaged = bytearray(data)
    damaged[pos] ^= 0xFF
    return bytes(damaged)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db(tmp_path: Path) -> Database:
    db_path = tmp_path / "test.db"
    database = Database(db_path)
    yield database
    database.close()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        data_dir=tmp_path / "data",
        config_dir=tmp_path / "config",
    )


@pytest.fixture
def storage(db: Database) -> BookStorage:
    return BookStorage(db)


@pytest.fixture
def library(storage: BookStorage) -> Library:
    return Library(storage)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
