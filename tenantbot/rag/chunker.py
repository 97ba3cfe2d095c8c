"""
Chunker module for splitting a client's raw section text into retrievable chunks.

The chunking policy is keyed by section:
    - listings: one chunk per listing (blank lines, then inline headings),
      with a sliding window as the last resort for one unbroken blob
    - paymentPlans / faqs: blank-line blocks bundled in small groups
    - everything else: the whole section is one chunk (hours must never be cut)

Chunk text is never rewritten, only grouped.
"""

import logging
import re
from typing import Dict, Iterable, List, Tuple

from tenantbot.models.knowledge import Section, section_name

logger = logging.getLogger(__name__)

# Listings sliding-window fallback
LISTING_WINDOW_THRESHOLD = 1500  # only blobs longer than this get windowed
LISTING_WINDOW_SIZE = 1200
LISTING_WINDOW_STRIDE = 1000  # 200 chars of overlap between windows

# Blocks per bundled chunk
PAYMENT_PLAN_BUNDLE = 3
FAQ_BUNDLE = 8

BLOCK_SEPARATOR = "\n\n"

_BLANK_LINES_RE = re.compile(r"\n\s*\n")

# Inline listing headings such as "Property 3:", "Unit:", "Project:", "Compound:"
_LISTING_HEADING_RE = re.compile(
    r"(?=\b(?:property|unit|listing)\s*#?\d*\s*:|\b(?:project|compound)\s*:)",
    re.IGNORECASE,
)


def split_blank_blocks(text: str) -> List[str]:
    """Split text on one or more blank lines, dropping empty blocks."""
    return [b.strip() for b in _BLANK_LINES_RE.split(text) if b.strip()]


def bundle(blocks: List[str], size: int) -> List[str]:
    """Join consecutive blocks in groups of `size`, separated by a blank line."""
    return [
        BLOCK_SEPARATOR.join(blocks[i:i + size])
        for i in range(0, len(blocks), size)
    ]


def sliding_window(
    text: str,
    size: int = LISTING_WINDOW_SIZE,
    stride: int = LISTING_WINDOW_STRIDE,
) -> List[str]:
    """Cut text into fixed-size overlapping windows covering all of it.

    Windows are neither trimmed nor dropped, so consecutive windows overlap by
    exactly `size - stride` characters and stitching them back together with
    the overlap removed gives `text` again.
    """
    windows = []
    for start in range(0, len(text), stride):
        windows.append(text[start:start + size])
        if start + size >= len(text):
            break
    return windows


def _chunk_listings(text: str) -> List[str]:
    blocks = split_blank_blocks(text)
    if len(blocks) >= 2:
        return blocks

    pieces = [p.strip() for p in _LISTING_HEADING_RE.split(text) if p.strip()]
    if len(pieces) >= 2:
        logger.debug(f"[CHUNKER] Listings split on inline headings: {len(pieces)} pieces")
        return pieces

    if len(text) > LISTING_WINDOW_THRESHOLD:
        # Whitespace-only windows carry nothing retrievable
        windows = [w for w in sliding_window(text) if w.strip()]
        logger.info(
            f"[CHUNKER] Listings blob of {len(text):,} chars has no separators, "
            f"using {len(windows)} sliding windows"
        )
        return windows

    return [text]


def chunk_section(section, text) -> List[str]:
    """Split one section's raw text into ordered, non-empty chunks.

    Args:
        section: Section member or name. Unknown names use the whole-text policy.
        text: Raw section text. None is treated as empty.

    Returns:
        List of chunk strings in source order; empty for blank input.
    """
    t = str(text or "").strip()
    if not t:
        return []

    name = section_name(section)

    if name == Section.LISTINGS.value:
        return _chunk_listings(t)

    if name == Section.PAYMENT_PLANS.value:
        return bundle(split_blank_blocks(t), PAYMENT_PLAN_BUNDLE)

    if name == Section.FAQS.value:
        return bundle(split_blank_blocks(t), FAQ_BUNDLE)

    # Small, critical info: keep intact
    return [t]


def chunk_sections(raw_sections: Dict[str, str]) -> List[Tuple[str, str]]:
    """Chunk every section of a mapping.

    Returns:
        (section, chunk_text) pairs in mapping order.
    """
    pairs: List[Tuple[str, str]] = []
    for section, text in (raw_sections or {}).items():
        name = section_name(section)
        chunks = chunk_section(name, text)
        pairs.extend((name, c) for c in chunks)
        logger.debug(f"[CHUNKER] Section '{name}': {len(chunks)} chunks")
    logger.info(f"[CHUNKER] Created {len(pairs)} chunks from {len(raw_sections or {})} sections")
    return pairs


def count_by_section(pairs: Iterable[Tuple[str, str]]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for section, _ in pairs:
        counts[section] = counts.get(section, 0) + 1
    return counts


if __name__ == "__main__":
    # Standalone check: chunk a text file as the given section
    import sys

    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) != 3:
        print("Usage: python -m tenantbot.rag.chunker <section> <file>")
        sys.exit(1)
    with open(sys.argv[2], "r", encoding="utf-8") as f:
        chunks = chunk_section(sys.argv[1], f.read())
    print(f"\nTotal chunks: {len(chunks)}")
    for i, c in enumerate(chunks, 1):
        print(f"  #{i} ({len(c):,} chars): {c[:60]!r}")
