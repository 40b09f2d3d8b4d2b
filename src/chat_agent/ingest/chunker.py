"""Boundary-aware sliding-window chunking."""

from __future__ import annotations

import re
from collections.abc import Iterator

from chat_agent.config import ChunkingConfig
from chat_agent.errors import ConfigurationError

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
_SENTENCE_END = re.compile(r"[.!?。！？]+[\"')\]]*\s+")
_WHITESPACE = re.compile(r"\s+")


class ChunkSequence:
    """Lazy, restartable view over the chunks of one text.

    Every call to `iter()` re-runs the window scan from the start, so the
    sequence can be consumed more than once without materialising it.
    """

    def __init__(self, chunker: "TextChunker", text: str) -> None:
        self._chunker = chunker
        self._text = text

    def __iter__(self) -> Iterator[str]:
        for start, end in self._chunker.spans(self._text):
            yield self._text[start:end]


class TextChunker:
    """Splits text into windows of at most `chunk_size` characters.

    Design notes:
    1. Every chunk is an exact slice of the source, so consecutive chunks share
       exactly `overlap` characters and dropping the first `overlap`
       characters of each later chunk rebuilds the original text.

    2. A window ends on the last paragraph break that fits, else the last
       sentence end, else the last whitespace run. Only when none of those
       lies past the overlap region is the window cut at the hard size limit.

    3. The boundary search starts after the overlap region, which guarantees
       each window advances by at least one character.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()
        if self.config.overlap >= self.config.chunk_size:
            raise ConfigurationError(
                f"overlap ({self.config.overlap}) must be less than "
                f"chunk_size ({self.config.chunk_size})"
            )

    def split(self, text: str) -> ChunkSequence:
        return ChunkSequence(self, text)

    def spans(self, text: str) -> Iterator[tuple[int, int]]:
        """Yield `(start, end)` offsets of each chunk in order."""

        size = self.config.chunk_size
        overlap = self.config.overlap
        length = len(text)
        start = 0

        while start < length:
            hard_end = start + size
            if hard_end >= length:
                yield start, length
                return
            end = self._find_boundary(text, start, start + overlap + 1, hard_end)
            yield start, end
            start = end - overlap

    @staticmethod
    def _find_boundary(text: str, start: int, lowest: int, hard_end: int) -> int:
        window = text[start:hard_end]
        for pattern in (_PARAGRAPH_BREAK, _SENTENCE_END, _WHITESPACE):
            best = None
            for match in pattern.finditer(window):
                end = start + match.end()
                if end >= lowest:
                    best = end
            if best is not None:
                return best
        return hard_end

