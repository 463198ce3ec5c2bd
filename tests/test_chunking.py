import pytest

from semantic_memory.core.errors import ValidationError
from semantic_memory.services.chunking import TextChunker, WhitespaceTokenizer


def words(start: int, count: int) -> str:
    return " ".join(f"{i:04d}word" for i in range(start, start + count))


def document(*sizes: int) -> str:
    paragraphs, start = [], 0
    for size in sizes:
        paragraphs.append(words(start, size))
        start += size
    return "\n\n".join(paragraphs)


@pytest.mark.parametrize("sizes", [(600, 600), (700, 500), (720, 480), (480, 720), (1200,)])
def test_twelve_hundred_tokens_make_three_chunks_with_full_overlap(sizes):
    chunks = TextChunker(chunk_size_tokens=500, overlap_tokens=50).chunk(document(*sizes))

    assert len(chunks) == 3
    assert all(chunk.token_count <= 550 for chunk in chunks)
    for previous, current in zip(chunks, chunks[1:], strict=False):
        assert current.text.split()[:50] == previous.text.split()[-50:]

    # Past the carried overlap, every token appears exactly once and in order
    new_content = chunks[0].text.split() + [token for chunk in chunks[1:] for token in chunk.text.split()[50:]]
    assert new_content == words(0, 1200).split()


def test_overlap_is_carried_when_the_next_paragraph_fills_the_budget():
    chunks = TextChunker(chunk_size_tokens=500, overlap_tokens=50).chunk(document(700, 500))

    assert [chunk.token_count for chunk in chunks] == [500, 250, 550]
    assert chunks[2].text.split()[0] == "0650word"


def test_continuation_pieces_reference_where_the_paragraph_began():
    chunks = TextChunker(chunk_size_tokens=500, overlap_tokens=50).chunk(document(600, 600))

    assert [chunk.token_count for chunk in chunks] == [500, 550, 250]
    assert [chunk.sequence for chunk in chunks] == [0, 1, 2]
    assert [chunk.parent_sequence for chunk in chunks] == [None, 0, 1]


def test_small_paragraphs_are_packed_and_never_split():
    paragraphs = [words(i * 30, 30) for i in range(10)]
    chunks = TextChunker(chunk_size_tokens=100, overlap_tokens=10).chunk("\n\n".join(paragraphs))

    for chunk in chunks:
        assert chunk.token_count <= 110
        assert chunk.parent_sequence is None
    # Every paragraph appears whole in some chunk
    for paragraph in paragraphs:
        assert any(paragraph in chunk.text for chunk in chunks)


def test_full_seed_is_kept_beside_a_paragraph_that_fills_the_budget():
    chunks = TextChunker(chunk_size_tokens=100, overlap_tokens=10).chunk(document(60, 95))

    assert [chunk.token_count for chunk in chunks] == [60, 105]
    assert chunks[1].text.split()[:10] == words(50, 10).split()


def test_empty_and_blank_text_yield_no_chunks():
    chunker = TextChunker(chunk_size_tokens=10, overlap_tokens=2)
    assert chunker.chunk("") == []
    assert chunker.chunk("\n\n   \n\n") == []


def test_short_text_is_one_chunk():
    chunks = TextChunker(chunk_size_tokens=10, overlap_tokens=2).chunk("just a few words")
    assert len(chunks) == 1
    assert chunks[0].text == "just a few words"
    assert chunks[0].token_count == 4


def test_chunking_is_deterministic():
    text = words(0, 250) + "\n\n" + words(250, 40) + "\n\n" + words(290, 500)
    chunker = TextChunker(chunk_size_tokens=120, overlap_tokens=20)
    assert chunker.chunk(text) == chunker.chunk(text)


def test_zero_overlap():
    chunks = TextChunker(chunk_size_tokens=100, overlap_tokens=0).chunk(words(0, 250))
    assert [chunk.token_count for chunk in chunks] == [100, 100, 50]
    assert chunks[1].text.split()[0] == "0100word"


@pytest.mark.parametrize(("size", "overlap"), [(0, 0), (100, 100), (100, -1)])
def test_invalid_budgets_are_rejected(size, overlap):
    with pytest.raises(ValidationError):
        TextChunker(chunk_size_tokens=size, overlap_tokens=overlap)


def test_whitespace_tokenizer_round_trip():
    tokenizer = WhitespaceTokenizer()
    assert tokenizer.detokenize(tokenizer.tokenize("  a  b\tc\n")) == "a b c"
