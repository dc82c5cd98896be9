# src/ndc_qty/registry/identifiers.py
"""
Package identifier (NDC) normalization.

Labelers publish 10-digit identifiers in three hyphenated layouts (4-4-2,
5-3-2, 5-4-1). Everything inside the engine uses the 11-digit 5-4-2 form
without hyphens; the zero is inserted into whichever segment is short.
"""
from __future__ import annotations

import re
from typing import List, Optional

_HYPHENATED_RE = re.compile(r"^(\d{4,5})-(\d{3,4})-(\d{1,2})$")
_DIGITS_RE = re.compile(r"^\d{10,11}$")

_SEGMENT_WIDTHS = (5, 4, 2)


def normalize_package_id(raw: Optional[str]) -> Optional[str]:
    """
    Returns the 11-digit hyphen-free identifier, or None when `raw` is not
    a recognizable package identifier.
    """
    if raw is None:
        return None
    text = re.sub(r"\s+", "", str(raw))
    if not text:
        return None

    match = _HYPHENATED_RE.match(text)
    if match:
        segments = match.groups()
        if sum(len(s) for s in segments) not in (10, 11):
            return None
        return "".join(s.zfill(width) for s, width in zip(segments, _SEGMENT_WIDTHS))

    if _DIGITS_RE.match(text):
        # bare 10-digit ids have no layout information, assume a short labeler
        return text.zfill(11)

    return None


def is_package_identifier(text: Optional[str]) -> bool:
    return normalize_package_id(text) is not None


def format_package_identifier(package_id: str) -> str:
    """11-digit id -> "12345-6789-01" (the layout the packaging registry searches on)."""
    normalized = normalize_package_id(package_id)
    if normalized is None:
        raise ValueError(f"Not a package identifier: {package_id!r}")
    return f"{normalized[:5]}-{normalized[5:9]}-{normalized[9:]}"


def package_identifier_layouts(package_id: str) -> List[str]:
    """
    11-digit id -> the hyphenated 10-digit layouts it may be published under.

    A padding zero can only be dropped from a segment that starts with one, so
    "68180051403" yields ["68180-514-03", "68180-0514-3"]. Ids with no
    droppable zero come back in the 5-4-2 form.
    """
    normalized = normalize_package_id(package_id)
    if normalized is None:
        raise ValueError(f"Not a package identifier: {package_id!r}")
    labeler, product, package = normalized[:5], normalized[5:9], normalized[9:]

    layouts: List[str] = []
    if labeler.startswith("0"):
        layouts.append(f"{labeler[1:]}-{product}-{package}")
    if product.startswith("0"):
        layouts.append(f"{labeler}-{product[1:]}-{package}")
    if package.startswith("0"):
        layouts.append(f"{labeler}-{product}-{package[1:]}")
    return layouts or [format_package_identifier(normalized)]
