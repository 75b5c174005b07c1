
import re
from typing import Iterator, List

_WS = re.compile(r"\s+")

# Cut preference in a window's tail: sentence end, then a space. Newlines are gone after normalizing.
SENTENCE_END = ". "
SPACE = " "

BOUNDARY_FLOOR = 0.7
SPACE_FLOOR = 0.5


def normalize_whitespace(text: str) -> str:
    return _WS.sub(" ", text or "").strip()


def _find_cut(text: str, start: int, end: int, chunk_size: int) -> int:
    """Best cut position in text[start:end], or ``end`` when no boundary qualifies."""
    floor = start + int(chunk_size * BOUNDARY_FLOOR)
    idx = text.rfind(SENTENCE_END, floor, end)
    if idx != -1:
        return idx + 1  # keep the period
    idx = text.rfind(SPACE, start + int(chunk_size * SPACE_FLOOR), end)
    if idx != -1:
        return idx
    return end


def iter_chunks(text: str, chunk_size: int = 1000, overlap: int = 200) -> Iterator[str]:
    """Yield overlapping windows of at most ``chunk_size`` characters.

    Whitespace is collapsed first so offsets are stable; for the same input and
    parameters the output is always identical.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")

    text = normalize_whitespace(text)
    length = len(text)
    if not length:
        return
    if length <= chunk_size:
        yield text
        return

    start = 0
    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            end = _find_cut(text, start, end, chunk_size)
        piece = text[start:end].strip()
        if piece:
            yield piece
        if end >= length:
            break
        next_start = max(end - overlap, 0)
        if next_start <= start:
            # overlap would stall the scan; continue without it
            next_start = end
        start = next_start


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> List[str]:
    return list(iter_chunks(text, chunk_size, overlap))


class TextChunker:
    """Chunking parameters bound once and reused for every document."""

    def __init__(self, chunk_size: int = 1000, overlap: int = 200) -> None:
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def split(self, text: str) -> "ChunkSequence":
        return ChunkSequence(text, self.chunk_size, self.overlap)


class ChunkSequence:
    """Lazy chunk view over one text; iterating again restarts from the beginning."""

    def __init__(self, text: str, chunk_size: int, overlap: int) -> None:
        self._text = text
        self._chunk_size = chunk_size
        self._overlap = overlap

    def __iter__(self) -> Iterator[str]:
        return iter_chunks(self._text, self._chunk_size, self._overlap)
