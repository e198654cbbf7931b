"""Decode text files of unknown encoding."""

from __future__ import annotations

import logging
from typing import Iterable

log = logging.getLogger(__name__)

DEFAULT_ENCODINGS: tuple[str, ...] = ("utf-8-sig", "gb18030", "big5")
DEFAULT_REPLACEMENT_THRESHOLD = 0.01

_REPLACEMENT_CHAR = "�"


def replacement_ratio(text: str) -> float:
    return text.count(_REPLACEMENT_CHAR) / max(1, len(text))


def decode_text(
    data: bytes,
    encodings: Iterable[str] = DEFAULT_ENCODINGS,
    threshold: float = DEFAULT_REPLACEMENT_THRESHOLD,
) -> str:
    """Decode ``data`` with the first encoding that yields few undecodable chars.

    Each candidate decodes with replacement; the first whose share of U+FFFD
    markers is below ``threshold`` wins. When none qualifies the candidate
    with the lowest share is returned.
    """
    if not data:
        return ""

    best: tuple[float, str, str] | None = None
    for enc in encodings:
        try:
            text = data.decode(enc, errors="replace")
        except LookupError:
            log.warning("Unknown text encoding %r, skipping", enc)
            continue
        ratio = replacement_ratio(text)
        if ratio < threshold:
            log.debug("Decoded %d bytes as %s", len(data), enc)
            return text
        if best is None or ratio < best[0]:
            best = (ratio, enc, text)

    if best is None:
        return data.decode("utf-8", errors="replace")

    log.warning(
        "No encoding decoded cleanly, using %s (%.1f%% undecodable)",
        best[1],
        best[0] * 100,
    )
    return best[2]
