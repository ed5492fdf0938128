"""
Tests for hierarchy-aware chunking
"""

from sebi_corpus.rag.splitter import ChunkOptions, HierarchicalChunker, chunk_document, split_into_sentences

from conftest import build_document


def sentences(n: int) -> str:
    # Four words per sentence under the word-count tokenizer
    return " ".join(f"Sentence {i} has words." for i in range(n))


def shared_words(previous: str, following: str) -> int:
    a, b = previous.split(), following.split()
    for k in range(min(len(a), len(b)), 0, -1):
        if a[-k:] == b[:k]:
            return k
    return 0


def test_split_into_sentences():
    assert split_into_sentences("First one. Second!  Third?\nFourth") == ["First one.", "Second!", "Third?", "Fourth"]


def test_hierarchy_scenario(tokenizer):
    document = build_document(content="Chapter 1: Intro\n1.1 Background\nSEBI regulates mutual funds in India.")

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=512))

    assert len(chunks) == 1
    assert chunks[0].section_hierarchy == ["1 Intro", "1.1 Background"]
    assert chunks[0].content == "SEBI regulates mutual funds in India."


def test_ordinals_and_ids_are_contiguous(tokenizer):
    document = build_document(content=sentences(10))

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=12, min_tokens=0, overlap_tokens=5))

    assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))
    assert [chunk.chunk_id for chunk in chunks] == [f"{document.id}-chunk-{i}" for i in range(len(chunks))]
    assert all(chunk.document_id == document.id for chunk in chunks)


def test_token_counts_are_exact(tokenizer):
    document = build_document(content=sentences(25))

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=17, min_tokens=0, overlap_tokens=6))

    assert chunks
    for chunk in chunks:
        assert chunk.tokens == tokenizer.count(chunk.content)
        assert chunk.tokens <= 17


def test_overlap_is_non_empty_and_bounded(tokenizer):
    document = build_document(content=sentences(10))

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=12, min_tokens=0, overlap_tokens=5))

    assert [chunk.content for chunk in chunks[:2]] == [
        "Sentence 0 has words. Sentence 1 has words. Sentence 2 has words.",
        "Sentence 2 has words. Sentence 3 has words. Sentence 4 has words.",
    ]
    for previous, following in zip(chunks, chunks[1:]):
        assert 0 < shared_words(previous.content, following.content) <= 5


def test_overlap_falls_back_to_trailing_words(tokenizer):
    document = build_document(content=sentences(6))

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=8, min_tokens=0, overlap_tokens=2))

    assert chunks[1].content.startswith("has words.")
    for previous, following in zip(chunks, chunks[1:]):
        assert 0 < shared_words(previous.content, following.content) <= 2


def test_overlap_shrinks_to_fit_next_sentence(tokenizer):
    chunker = HierarchicalChunker(tokenizer, ChunkOptions(max_tokens=10, min_tokens=0, overlap_tokens=3))

    passages = chunker.split_text("a b c. d e f g h i j k.")

    assert passages == ["a b c.", "b c. d e f g h i j k."]
    assert all(tokenizer.count(passage) <= 10 for passage in passages)


def test_overlap_dropped_only_when_next_sentence_fills_passage(tokenizer):
    chunker = HierarchicalChunker(tokenizer, ChunkOptions(max_tokens=10, min_tokens=0, overlap_tokens=3))

    passages = chunker.split_text("a b c. d e f g h i j k l m.")

    assert passages == ["a b c.", "d e f g h i j k l m."]


def test_zero_overlap_shares_nothing(tokenizer):
    document = build_document(content=sentences(10))

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=12, min_tokens=0, overlap_tokens=0))

    assert len(chunks) == 4
    for previous, following in zip(chunks, chunks[1:]):
        assert shared_words(previous.content, following.content) == 0


def test_rechunking_is_idempotent(tokenizer):
    document = build_document(content=sentences(30))
    options = ChunkOptions(max_tokens=20, min_tokens=4, overlap_tokens=5)

    first = chunk_document(document, tokenizer, options)
    second = chunk_document(document, tokenizer, options)

    assert [(c.chunk_index, c.content) for c in first] == [(c.chunk_index, c.content) for c in second]


def test_small_passages_dropped_when_more_than_one(tokenizer):
    document = build_document(content=sentences(10))

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=12, min_tokens=10, overlap_tokens=5))

    # The trailing "Sentence 8 ... Sentence 9" passage has 8 tokens
    assert all(chunk.tokens >= 10 for chunk in chunks)
    assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))
    assert "Sentence 9" not in chunks[-1].content


def test_single_small_passage_is_kept(tokenizer):
    document = build_document(content="Short circular.")

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=512, min_tokens=128))

    assert [chunk.content for chunk in chunks] == ["Short circular."]


def test_long_sentence_is_split_into_word_runs(tokenizer):
    words = " ".join(f"w{i}" for i in range(30))
    chunker = HierarchicalChunker(tokenizer, ChunkOptions(max_tokens=10, min_tokens=0, overlap_tokens=0))

    pieces = chunker.split_text(words)

    assert len(pieces) == 3
    assert all(tokenizer.count(piece) <= 10 for piece in pieces)
    assert " ".join(pieces) == words


def test_structured_blocks_inherit_lineage(tokenizer):
    content = "\n".join([
        "Chapter 1: Intro",
        "1.1 Background",
        sentences(6),
        "1.2 Scope",
        "Applies to all asset management companies registered with SEBI.",
    ])
    document = build_document(content=content)

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=12, min_tokens=0, overlap_tokens=4))

    background = [chunk for chunk in chunks if chunk.section_hierarchy[-1] == "1.1 Background"]
    scope = [chunk for chunk in chunks if chunk.section_hierarchy[-1] == "1.2 Scope"]
    assert len(background) > 1
    assert all(chunk.section_hierarchy == ["1 Intro", "1.1 Background"] for chunk in background)
    assert [chunk.content for chunk in scope] == ["Applies to all asset management companies registered with SEBI."]
    assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))


def test_small_block_dropped_among_many(tokenizer):
    content = "\n".join([
        "Chapter 1: Intro",
        "1.1 Background",
        "Tiny.",
        "1.2 Scope",
        sentences(3),
    ])
    document = build_document(content=content)

    chunks = chunk_document(document, tokenizer, ChunkOptions(max_tokens=50, min_tokens=5, overlap_tokens=0))

    assert [chunk.section_hierarchy[-1] for chunk in chunks] == ["1.2 Scope"]
    assert chunks[0].chunk_index == 0
