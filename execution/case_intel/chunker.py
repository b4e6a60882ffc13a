"""
Paragraph-Aware Document Chunker

Splits extracted document text into bounded, overlapping chunks for embedding.

Packing strategy:
- Paragraphs (blank-line separated) are accumulated until the next one would
  push the chunk over max_tokens
- A paragraph that is too large on its own is packed sentence by sentence,
  and a sentence that is still too large is packed word by word
- Each new chunk starts with an overlap tail of the previous one

Every chunk's content is an exact slice of the input, so start_char/end_char
can be used to map search hits back to the source text.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .patterns import (
    MAX_PAGE_NUMBER,
    PAGE_MARKER_PATTERNS,
    PARAGRAPH_BREAK,
    SENTENCE_BREAK,
    SENTENCE_END,
    WORD_BREAK,
)

logger = logging.getLogger(__name__)

# Words are ~1.3 tokens on average for English legal text
TOKENS_PER_WORD = 1.3

# Characters per token when sizing the overlap window
OVERLAP_CHARS_PER_TOKEN = 4


@dataclass
class Chunk:
    """A contiguous slice of a document's text."""
    content: str
    index: int
    token_count: int
    start_char: int
    end_char: int
    page_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "index": self.index,
            "token_count": self.token_count,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "page_number": self.page_number,
        }


@dataclass
class ChunkConfig:
    """Configuration for chunking parameters."""
    max_tokens: int = 500
    overlap_tokens: int = 50
    # Characters; shorter chunks are only emitted as the final remainder
    min_chunk_size: int = 100


def estimate_tokens(text: str) -> int:
    """Approximate token count from the word count."""
    return round(len(text.split()) * TOKENS_PER_WORD)


def _trim(text: str, start: int, end: int) -> tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def _split_spans(text: str, start: int, end: int, separator) -> list[tuple[int, int]]:
    """Split text[start:end] on a separator pattern into trimmed, non-empty spans."""
    spans = []
    pos = start
    for match in separator.finditer(text, start, end):
        spans.append(_trim(text, pos, match.start()))
        pos = match.end()
    spans.append(_trim(text, pos, end))
    return [(s, e) for s, e in spans if e > s]


class DocumentChunker:
    """
    Packs document text into chunks of at most ``max_tokens`` estimated tokens.

    Chunks are returned in document order with contiguous indexes. Consecutive
    chunks overlap by at most ``overlap_tokens * 4`` characters.
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()
        # Finer granularities tried, in order, for spans over the token limit
        self._splitters = (SENTENCE_BREAK, WORD_BREAK)

    def chunk(self, text: str) -> list[Chunk]:
        """
        Split text into chunks and tag each with its page number.

        Args:
            text: Extracted document text (may be empty)

        Returns:
            Ordered list of Chunk objects; empty for blank input
        """
        if not text or not text.strip():
            return []

        spans = []
        paragraphs = _split_spans(text, 0, len(text), PARAGRAPH_BREAK)
        pending = self._pack(text, paragraphs, 0, spans, None)
        if pending is not None:
            spans.append(pending)

        chunks = [
            Chunk(
                content=text[start:end],
                index=i,
                token_count=estimate_tokens(text[start:end]),
                start_char=start,
                end_char=end,
            )
            for i, (start, end) in enumerate(spans)
        ]
        self.tag_pages(text, chunks)

        logger.info(f"Created {len(chunks)} chunks from {len(text)} characters")
        return chunks

    def _pack(
        self,
        text: str,
        units: list[tuple[int, int]],
        depth: int,
        out: list[tuple[int, int]],
        buffer: Optional[tuple[int, int]],
    ) -> Optional[tuple[int, int]]:
        """
        Accumulate units into ``out``; return the still-open buffer span.

        A buffer shorter than min_chunk_size is never flushed here, it keeps
        growing (possibly into a finer-grained pass) until it is long enough
        or becomes the final remainder.
        """
        max_tokens = self.config.max_tokens

        for start, end in units:
            oversized = estimate_tokens(text[start:end]) > max_tokens
            if oversized and depth < len(self._splitters):
                if buffer is not None and self._long_enough(buffer):
                    out.append(buffer)
                    buffer = None
                pieces = _split_spans(text, start, end, self._splitters[depth])
                buffer = self._pack(text, pieces, depth + 1, out, buffer)
                continue

            if buffer is None:
                buffer = (start, end)
                continue

            combined = estimate_tokens(text[buffer[0]:end])
            if combined > max_tokens and self._long_enough(buffer):
                out.append(buffer)
                buffer = (self._next_start(text, buffer, start), end)
            else:
                buffer = (buffer[0], end)

        return buffer

    def _long_enough(self, span: tuple[int, int]) -> bool:
        return span[1] - span[0] >= self.config.min_chunk_size

    def _next_start(self, text: str, previous: tuple[int, int], unit_start: int) -> int:
        """Start of the chunk following ``previous``: its overlap tail, or the next unit."""
        overlap_start = self._overlap_start(text, *previous)
        return overlap_start if overlap_start < previous[1] else unit_start

    def _overlap_start(self, text: str, start: int, end: int) -> int:
        """
        Offset where the overlap tail of text[start:end] begins.

        The window is the last overlap_tokens * 4 characters, moved forward to
        the first sentence start inside it, else the first word start, else
        used as is.
        """
        window = self.config.overlap_tokens * OVERLAP_CHARS_PER_TOKEN
        if window <= 0:
            return end

        window_start = max(start, end - window)
        segment = text[window_start:end]
        for boundary in (SENTENCE_END, WORD_BREAK):
            match = boundary.search(segment)
            if match and match.end() < len(segment):
                return window_start + match.end()

        while window_start < end and text[window_start].isspace():
            window_start += 1
        return window_start

    # =========================================================================
    # Page tagging
    # =========================================================================

    @staticmethod
    def extract_page_markers(text: str) -> list[tuple[int, int]]:
        """Return (position, page_number) pairs for page markers, by position."""
        markers = {}
        for pattern in PAGE_MARKER_PATTERNS:
            for match in pattern.finditer(text):
                page = int(match.group(1))
                if 0 < page < MAX_PAGE_NUMBER:
                    markers[match.start()] = page
        return sorted(markers.items())

    def tag_pages(self, text: str, chunks: list[Chunk]) -> None:
        """Set page_number on each chunk from the last marker at or before its start."""
        markers = self.extract_page_markers(text)
        if not markers:
            return

        for chunk in chunks:
            page = None
            for position, number in markers:
                if position > chunk.start_char:
                    break
                page = number
            chunk.page_number = page


def chunk_document(text: str, **overrides) -> list[Chunk]:
    """Chunk text with default settings, overriding any ChunkConfig field."""
    return DocumentChunker(ChunkConfig(**overrides)).chunk(text)
