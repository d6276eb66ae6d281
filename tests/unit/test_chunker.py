import re

import pytest

from precision_rag.config import ChunkingConfig
from precision_rag.ingest.chunker import DocumentChunker, ParagraphChunker, estimate_tokens
from precision_rag.types import ParsedDocument


def _paragraph(tokens: int, word: str) -> str:
    # "word " is 5 chars; sized so estimate_tokens lands near `tokens`.
    words = max(1, (tokens * 4) // 6)
    return " ".join(f"{word}{i % 10}" for i in range(words))


def _non_ws(text: str) -> str:
    return re.sub(r"\s+", "", text)


def test_paragraphs_pack_with_whole_paragraph_overlap() -> None:
    config = ChunkingConfig(max_tokens=150, overlap_tokens=50, chunk_size=600, chunk_overlap=50)
    p1, p2, p3 = _paragraph(80, "alpha"), _paragraph(40, "beta"), _paragraph(80, "gamma")
    chunks = ParagraphChunker(config).split_text(f"{p1}\n\n{p2}\n\n{p3}")

    assert chunks == [f"{p1}\n\n{p2}", f"{p2}\n\n{p3}"]


def test_oversized_paragraphs_respect_bound_and_carry_tail_overlap() -> None:
    config = ChunkingConfig(max_tokens=150, overlap_tokens=50, chunk_size=600, chunk_overlap=50)
    sentence = "Revenue grew in the first quarter across all regions."
    p1 = " ".join([sentence] * 15)
    p2 = " ".join(["Operating margin declined slightly in the period."] * 16)
    assert estimate_tokens(p1) > 150 and estimate_tokens(p2) > 150

    chunks = ParagraphChunker(config).split_text(f"{p1}\n\n{p2}")

    assert len(chunks) >= 2
    assert all(estimate_tokens(chunk) <= 150 for chunk in chunks)
    tail_of_first = chunks[0].rsplit(". ", 1)[-1]
    assert chunks[1].startswith(tail_of_first)


def test_every_chunk_adds_new_content_and_overlap_stays_in_budget() -> None:
    config = ChunkingConfig(max_tokens=60, overlap_tokens=20, chunk_size=600, chunk_overlap=50)
    text = "\n\n".join(_paragraph(15, w) for w in ("a", "b", "c", "d", "e", "f", "g", "h"))
    chunks = ParagraphChunker(config).split_text(text)

    for previous, current in zip(chunks, chunks[1:]):
        prev_units = previous.split("\n\n")
        cur_units = current.split("\n\n")
        shared = [unit for unit in cur_units if unit in prev_units]
        assert estimate_tokens("\n\n".join(shared)) <= 20
        assert len(shared) < len(cur_units)


def test_giant_paragraph_without_blank_lines_terminates_within_bound() -> None:
    config = ChunkingConfig(max_tokens=50, overlap_tokens=10, chunk_size=600, chunk_overlap=50)
    text = "x" * 1000 + " " + "word " * 300
    chunks = ParagraphChunker(config).split_text(text)

    assert chunks
    assert all(estimate_tokens(chunk) <= 50 for chunk in chunks)
    assert set(_non_ws(text)) <= set("".join(_non_ws(c) for c in chunks))
    assert "x" * 200 in "".join(chunks)


@pytest.mark.parametrize("strategy", ["sentence", "character"])
def test_empty_and_whitespace_text_produce_no_chunks(strategy: str) -> None:
    chunker = DocumentChunker(ChunkingConfig(strategy=strategy))
    assert chunker.split_text("") == []
    assert chunker.split_text("   \n\n  \t ") == []


def test_text_shorter_than_overlap_is_one_chunk() -> None:
    config = ChunkingConfig(strategy="character", chunk_size=200, chunk_overlap=100)
    assert DocumentChunker(config).split_text("Short note about Q1 2024.") == [
        "Short note about Q1 2024."
    ]


def test_character_windows_snap_to_sentence_end_and_stay_bounded() -> None:
    config = ChunkingConfig(strategy="character", chunk_size=100, chunk_overlap=20)
    text = " ".join(f"Item {i} is sold." for i in range(60))
    chunks = DocumentChunker(config).split_text(text)

    assert len(chunks) > 1
    assert all(len(chunk) <= 100 for chunk in chunks)
    assert all(chunk.endswith(".") for chunk in chunks[:-1])


def test_character_strategy_covers_all_text() -> None:
    config = ChunkingConfig(strategy="character", chunk_size=120, chunk_overlap=30)
    text = "Intro line.\n\n" + " ".join(f"token{i}" for i in range(200))
    chunks = DocumentChunker(config).split_text(text)

    position = 0
    joined = _non_ws(text)
    for chunk in chunks:
        piece = _non_ws(chunk)
        found = joined.find(piece)
        assert found != -1
        assert found <= position
        position = max(position, found + len(piece))
    assert position == len(joined)


def test_character_strategy_drops_tiny_fragments() -> None:
    config = ChunkingConfig(strategy="character", chunk_size=40, chunk_overlap=0, min_chunk_chars=10)
    text = "A" * 40 + "   ok   "
    assert DocumentChunker(config).split_text(text) == ["A" * 40]


def test_chunking_is_deterministic() -> None:
    text = "\n\n".join(_paragraph(70, w) for w in ("p", "q", "r", "s"))
    chunker = DocumentChunker(ChunkingConfig(max_tokens=100, overlap_tokens=30))
    assert chunker.split_text(text) == chunker.split_text(text)


def test_chunk_document_stamps_ids_and_ordinals() -> None:
    chunker = DocumentChunker(ChunkingConfig(max_tokens=60, overlap_tokens=10))
    text = "\n\n".join(_paragraph(40, w) for w in ("a", "b", "c", "d"))
    doc = ParsedDocument(doc_id="report", text=text, metadata={"source": "unit"})

    chunks = chunker.chunk_document(doc)

    assert [chunk.chunk_id for chunk in chunks] == [
        f"report-chunk-{i:04d}" for i in range(len(chunks))
    ]
    assert all(chunk.metadata["total_chunks"] == len(chunks) for chunk in chunks)
    assert [chunk.metadata["chunk_index"] for chunk in chunks] == list(range(len(chunks)))
    assert all(chunk.metadata["source"] == "unit" for chunk in chunks)
    assert all(chunk.token_count <= 60 for chunk in chunks)


def test_config_rejects_overlap_not_smaller_than_size() -> None:
    with pytest.raises(ValueError):
        ChunkingConfig(chunk_size=100, chunk_overlap=100)
    with pytest.raises(ValueError):
        ChunkingConfig(max_tokens=50, overlap_tokens=50)


def test_character_settings_convert_to_token_budgets() -> None:
    config = ChunkingConfig.from_character_settings(1000, 200, "token")
    assert (config.max_tokens, config.overlap_tokens) == (250, 50)


def test_character_settings_with_close_overlap_stay_valid() -> None:
    config = ChunkingConfig.from_character_settings(103, 100)

    assert (config.max_tokens, config.overlap_tokens) == (25, 24)
    assert DocumentChunker(config).split_text("Revenue grew. " * 40)
