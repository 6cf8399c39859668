import random

import pytest

from forum_rag.common.tokenisation import TiktokenTokenCounter
from forum_rag.config.settings import ChunkingConfig
from forum_rag.retrieval.text_splitter import ForumPostChunker, chunk_text


def _words(prefix: str, n: int) -> str:
    return " ".join(f"{prefix}{i}" for i in range(n))


def _make_chunker(token_counter, max_tokens: int = 20, overlap: int = 5) -> ForumPostChunker:
    return ForumPostChunker(token_counter, ChunkingConfig(max_tokens=max_tokens, overlap=overlap))


def test_short_post_is_a_single_chunk(token_counter):
    """
    Test that content within the budget yields exactly one unchunked piece
    covering the whole preprocessed text.
    """
    chunker = _make_chunker(token_counter)
    content = "Die Wärmepumpe läuft seit gestern ohne Probleme."

    result = chunker.chunk(content)

    assert not result.was_chunked
    assert result.total_tokens == 7
    assert result.original_length == len(content)
    assert len(result.chunks) == 1

    chunk = result.chunks[0]
    assert chunk.text == content
    assert chunk.start_index == 0
    assert chunk.end_index == len(content)
    assert chunk.chunk_index == 0
    assert chunk.total_chunks == 1
    assert chunk.token_count == 7


@pytest.mark.parametrize("content", ["", None, "Hi", "   \n\n   ", 123])
def test_invalid_content_yields_no_chunks(token_counter, content):
    """
    Test that empty, missing, too short or non-string content produces an
    empty result with zero tokens.
    """
    result = _make_chunker(token_counter).chunk(content)

    assert result.chunks == []
    assert result.total_tokens == 0
    assert not result.was_chunked


def test_non_string_content_reports_zero_original_length(token_counter):
    """
    Test that the original length is only measured for string input.
    """
    assert _make_chunker(token_counter).chunk(12345).original_length == 0


def test_paragraphs_are_kept_whole_when_they_fit(token_counter):
    """
    Test that paragraphs which fit individually but not together become
    separate chunks, each one an unmodified paragraph.
    """
    paragraphs = [_words("a", 12), _words("b", 12), _words("c", 12)]
    result = _make_chunker(token_counter).chunk("\n\n".join(paragraphs))

    assert result.was_chunked
    assert [c.text for c in result.chunks] == paragraphs
    assert all(c.token_count == 12 for c in result.chunks)


def test_small_paragraphs_are_packed_together(token_counter):
    """
    Test that consecutive small paragraphs are packed greedily into one segment.
    """
    paragraphs = [_words("a", 6), _words("b", 6), _words("c", 6), _words("d", 6)]
    result = _make_chunker(token_counter).chunk("\n\n".join(paragraphs))

    assert [c.text for c in result.chunks] == [
        "\n\n".join(paragraphs[:3]),
        paragraphs[3],
    ]
    assert [c.token_count for c in result.chunks] == [18, 6]


def test_oversized_paragraph_is_split_on_sentences(token_counter):
    """
    Test that a paragraph exceeding the budget is packed sentence by sentence.
    """
    sentences = [f"{_words(f's{n}w', 7)} end." for n in range(5)]
    result = _make_chunker(token_counter).chunk(" ".join(sentences))

    assert [c.text for c in result.chunks] == [
        f"{sentences[0]} {sentences[1]}",
        f"{sentences[2]} {sentences[3]}",
        sentences[4],
    ]
    assert all(c.token_count <= 20 for c in result.chunks)


def test_single_huge_sentence_falls_back_to_overlapping_windows(token_counter):
    """
    Test that text without any semantic boundary is cut into fixed token
    windows sharing ``overlap`` tokens.
    """
    tokens = [f"t{i}" for i in range(50)]
    result = _make_chunker(token_counter, max_tokens=20, overlap=5).chunk(" ".join(tokens))

    windows = [c.text.split() for c in result.chunks]
    assert windows == [tokens[0:20], tokens[15:35], tokens[30:50]]

    for left, right in zip(windows, windows[1:]):
        assert left[-5:] == right[:5]


def test_token_windows_stop_at_end_of_sequence(token_counter):
    """
    Test that no trailing window is produced once the end is reached.
    """
    chunker = _make_chunker(token_counter, max_tokens=10, overlap=2)

    assert chunker.split_token_windows(_words("x", 10)) == [_words("x", 10)]
    assert len(chunker.split_token_windows(_words("x", 18))) == 2
    assert len(chunker.split_token_windows(_words("x", 19))) == 3


def test_chunk_positions_are_contiguous(token_counter):
    """
    Test chunk indices, totals and approximate offsets.
    """
    content = "\n\n".join(_words(p, 15) for p in "abcd")
    result = _make_chunker(token_counter).chunk(content)

    total = len(result.chunks)
    offset = 0
    for index, chunk in enumerate(result.chunks):
        assert chunk.chunk_index == index
        assert chunk.total_chunks == total
        assert chunk.start_index == offset
        assert chunk.end_index == chunk.start_index + len(chunk.text)
        offset = chunk.end_index


def test_chunks_never_exceed_token_budget(token_counter):
    """
    Test on seeded random posts that every chunk fits the budget and that
    ``was_chunked`` matches the number of chunks.
    """
    rng = random.Random(1234)
    chunker = _make_chunker(token_counter, max_tokens=25, overlap=4)
    vocab = ["Heizung", "Dämmung", "Wärme", "Pumpe", "Öl", "Gas", "kWh", "Grüße"]

    for _ in range(50):
        paragraphs = []
        for _ in range(rng.randint(1, 6)):
            sentences = []
            for _ in range(rng.randint(1, 6)):
                words = [rng.choice(vocab) for _ in range(rng.randint(1, 40))]
                sentences.append(" ".join(words) + rng.choice([".", "!", "?", ""]))
            paragraphs.append(" ".join(sentences))
        result = chunker.chunk("\n\n".join(paragraphs))

        assert all(c.token_count <= 25 for c in result.chunks)
        assert result.was_chunked == (len(result.chunks) > 1)
        assert all(c.text for c in result.chunks)


def test_chunk_text_wrapper_matches_chunker(token_counter):
    """
    Test that the functional wrapper behaves like the chunker.
    """
    config = ChunkingConfig(max_tokens=20, overlap=5)
    content = "\n\n".join(_words(p, 12) for p in "abc")

    expected = ForumPostChunker(token_counter, config).chunk(content)
    assert chunk_text(content, token_counter=token_counter, config=config) == expected


def test_chunker_uses_default_config(token_counter):
    """
    Test that omitting the config uses the 400/50 defaults.
    """
    chunker = ForumPostChunker(token_counter)

    assert chunker.max_tokens == 400
    assert chunker.overlap == 50


def test_chunker_with_tiktoken_respects_budget():
    """
    Test chunking a long German post with the real cl100k_base encoding.
    """
    counter = TiktokenTokenCounter()
    try:
        counter.count("Wärme")
    except Exception as exc:  # encoding download may be unavailable offline
        pytest.skip(f"tiktoken encoding unavailable: {exc}")

    paragraph = (
        "Die Wärmepumpe braucht eine gute Dämmung, sonst steigt der Stromverbrauch deutlich. "
        "Bei einer Vorlauftemperatur über 55 Grad lohnt sich der Betrieb kaum noch! "
    )
    content = "\n\n".join(paragraph * 4 for _ in range(10))

    with counter:
        result = ForumPostChunker(counter, ChunkingConfig(max_tokens=120, overlap=20)).chunk(content)
        assert result.was_chunked
        assert all(counter.count(c.text) <= 120 for c in result.chunks)
        assert all(c.token_count <= 120 for c in result.chunks)
