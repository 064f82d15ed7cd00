"""
Text Chunking
Fixed-size sliding window over normalized text. Purely positional.
"""

import math
import re
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from cipherdocs.core.errors import ValidationError


@dataclass
class TextChunk:
    content: str
    chunk_number: int  # 1-based
    page_number: int = 1
    start: int = 0
    end: int = 0


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace into single spaces"""
    return re.sub(r"\s+", " ", text).strip()


def join_pages(pages: Sequence[str]) -> Tuple[str, List[int]]:
    """
    Normalize each page and join them with a single space.
    Returns the joined text and the start offset of every page.
    """
    offsets = []
    parts = []
    position = 0
    for page in pages:
        normalized = normalize_text(page)
        if not normalized:
            offsets.append(position)
            continue
        if parts:
            position += 1
        offsets.append(position)
        parts.append(normalized)
        position += len(normalized)
    return " ".join(parts), offsets


def estimate_chunk_count(length: int, chunk_size: int, chunk_overlap: int) -> int:
    if length <= 0:
        return 0
    step = chunk_size - chunk_overlap
    return max(1, math.ceil((length - chunk_overlap) / step))


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
    page_offsets: Optional[Sequence[int]] = None,
) -> List[TextChunk]:
    """
    Split text into overlapping windows of chunk_size characters.

    Consecutive chunks share exactly chunk_overlap characters. The window
    stops once a chunk reaches the end of the text, so for text of length
    L the result has max(1, ceil((L - overlap) / (size - overlap))) chunks.
    """
    if chunk_size <= 0:
        raise ValidationError("chunk_size must be positive")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValidationError("chunk_overlap must be non-negative and smaller than chunk_size")
    if not text:
        return []

    step = chunk_size - chunk_overlap
    chunks = []
    start = 0
    while True:
        end = min(start + chunk_size, len(text))
        page_number = bisect_right(page_offsets, start) if page_offsets else 1
        chunks.append(
            TextChunk(
                content=text[start:end],
                chunk_number=len(chunks) + 1,
                page_number=max(1, page_number),
                start=start,
                end=end,
            )
        )
        if end >= len(text):
            break
        start += step
    return chunks
