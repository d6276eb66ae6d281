"""Paragraph-packing and fixed-window chunking implementations."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from precision_rag.config import ChunkingConfig
from precision_rag.types import DocumentChunk, ParsedDocument

logger = logging.getLogger(__name__)

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_SENTENCE_TERMINATORS = frozenset(".!?")
_SNAP_WINDOW_FRACTION = 0.8


def estimate_tokens(text: str, chars_per_token: float = 4.0) -> int:
    """Cheap token estimate: `ceil(len(text) / chars_per_token)`."""
    return math.ceil(len(text) / chars_per_token)


@dataclass(slots=True)
class _Unit:
    text: str
    # Separator emitted before this unit when it follows another unit.
    joiner: str


class ParagraphChunker:
    """Packs whole paragraphs into chunks bounded by an estimated token budget.

    Design notes:
    1. Units first.
       Text is split on blank lines into paragraphs. A paragraph whose estimate
       exceeds `max_tokens` is split into sentences, and a sentence that still
       exceeds the budget is cut into fixed-size pieces (at whitespace where
       possible). Every unit therefore fits in a chunk on its own.

    2. Greedy packing second.
       Units are appended to the running chunk while the estimate of the joined
       text stays within `max_tokens`. On overflow the chunk is closed.

    3. Overlap window.
       The next chunk is seeded by walking backward over the units just closed,
       taking whole units while the window stays within `overlap_tokens` and the
       window plus the incoming unit still fits in `max_tokens`. The incoming
       unit is always appended after the window, so every chunk carries new
       content and the loop always advances.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def split_text(self, text: str) -> list[str]:
        units = self._units(text)
        chunks: list[str] = []
        current: list[_Unit] = []
        current_len = 0

        for unit in units:
            if current:
                candidate_len = current_len + len(unit.joiner) + len(unit.text)
                if self._tokens(candidate_len) > self.config.max_tokens:
                    chunks.append(self._join(current))
                    current = self._overlap_window(current, unit)
                    current_len = self._joined_len(current)

            if current:
                current_len += len(unit.joiner) + len(unit.text)
            else:
                current_len = len(unit.text)
            current.append(unit)

        if current:
            chunks.append(self._join(current))
        return chunks

    def _overlap_window(self, closed: list[_Unit], incoming: _Unit) -> list[_Unit]:
        if self.config.overlap_tokens <= 0:
            return []

        window: list[_Unit] = []
        window_len = 0
        incoming_len = len(incoming.joiner) + len(incoming.text)
        for unit in reversed(closed):
            if window:
                candidate = len(unit.text) + len(window[0].joiner) + window_len
            else:
                candidate = len(unit.text)
            if self._tokens(candidate) > self.config.overlap_tokens:
                break
            if self._tokens(candidate + incoming_len) > self.config.max_tokens:
                break
            window.insert(0, unit)
            window_len = candidate
        return window

    def _units(self, text: str) -> list[_Unit]:
        units: list[_Unit] = []
        for paragraph in _PARAGRAPH_SPLIT.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            if self._tokens(len(paragraph)) <= self.config.max_tokens:
                units.append(_Unit(paragraph, "\n\n"))
                continue

            first = True
            for sentence in _SENTENCE_SPLIT.split(paragraph):
                sentence = sentence.strip()
                if not sentence:
                    continue
                for i, (piece, piece_joiner) in enumerate(self._split_sentence(sentence)):
                    if first:
                        joiner = "\n\n"
                    elif i == 0:
                        joiner = " "
                    else:
                        joiner = piece_joiner
                    units.append(_Unit(piece, joiner))
                    first = False
        return units

    def _split_sentence(self, sentence: str) -> list[tuple[str, str]]:
        """Cut an over-budget sentence into pieces paired with their joiner."""
        if self._tokens(len(sentence)) <= self.config.max_tokens:
            return [(sentence, " ")]

        max_chars = max(1, int(self.config.max_tokens * self.config.chars_per_token))
        pieces: list[tuple[str, str]] = []
        joiner = " "
        rest = sentence
        while rest:
            if len(rest) <= max_chars:
                pieces.append((rest, joiner))
                break
            cut = max(rest.rfind(ch, 1, max_chars + 1) for ch in " \n\t")
            if cut > 0:
                pieces.append((rest[:cut].rstrip(), joiner))
                rest = rest[cut:].lstrip()
                joiner = " "
            else:
                pieces.append((rest[:max_chars], joiner))
                rest = rest[max_chars:]
                joiner = " " if rest[:1].isspace() else ""
                rest = rest.lstrip()
        return pieces

    def _tokens(self, length: int) -> int:
        return math.ceil(length / self.config.chars_per_token)

    @staticmethod
    def _join(units: list[_Unit]) -> str:
        return units[0].text + "".join(unit.joiner + unit.text for unit in units[1:])

    @staticmethod
    def _joined_len(units: list[_Unit]) -> int:
        if not units:
            return 0
        return len(units[0].text) + sum(len(u.joiner) + len(u.text) for u in units[1:])


class CharacterChunker:
    """Fixed-size character windows snapped back to sentence ends.

    A window of `chunk_size` characters is cut early at the last sentence
    terminator followed by whitespace inside its final 20%. The next window
    starts `chunk_overlap` characters before the cut, or at the cut itself when
    that would not move forward. Fragments shorter than `min_chunk_chars`
    after trimming are dropped as noise.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def split_text(self, text: str) -> list[str]:
        size = self.config.chunk_size
        overlap = self.config.chunk_overlap
        length = len(text)
        chunks: list[str] = []
        start = 0

        while start < length:
            end = min(start + size, length)
            if end < length:
                end = self._snap_to_sentence(text, start, end)

            piece = text[start:end].strip()
            if len(piece) >= self.config.min_chunk_chars:
                chunks.append(piece)
            elif piece:
                logger.debug("Dropping %d-char fragment at offset %d", len(piece), start)

            if end >= length:
                break
            next_start = end - overlap
            if next_start <= start:
                next_start = end
            start = next_start

        return chunks

    def _snap_to_sentence(self, text: str, start: int, end: int) -> int:
        search_start = start + int(self.config.chunk_size * _SNAP_WINDOW_FRACTION)
        for i in range(end - 1, search_start - 1, -1):
            if text[i] in _SENTENCE_TERMINATORS and text[i + 1].isspace():
                return i + 1
        return end


class DocumentChunker:
    """Selects the configured strategy and stamps chunk ids and ordinals."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()
        if self.config.strategy == "character":
            self._splitter: ParagraphChunker | CharacterChunker = CharacterChunker(self.config)
        else:
            self._splitter = ParagraphChunker(self.config)

    def split_text(self, text: str) -> list[str]:
        return self._splitter.split_text(text)

    def chunk_document(self, document: ParsedDocument) -> list[DocumentChunk]:
        """Chunk a parsed document into ordered, bounded passages.

        Returns an empty list for empty or whitespace-only text.
        """

        pieces = self.split_text(document.text)
        total = len(pieces)
        logger.info(
            "Chunked %s into %d %s chunks", document.doc_id, total, self.config.strategy
        )
        return [
            DocumentChunk(
                chunk_id=f"{document.doc_id}-chunk-{index:04d}",
                document_id=document.doc_id,
                content=content,
                token_count=estimate_tokens(content, self.config.chars_per_token),
                metadata={
                    **document.metadata,
                    "chunk_index": index,
                    "total_chunks": total,
                    "chunk_strategy": self.config.strategy,
                },
            )
            for index, content in enumerate(pieces)
        ]
