from scenechain.segmentation.strategies import (
    Chunk,
    balanced_bounds,
    duration_chunks,
    even_split_chunks,
    merge_to_limit,
    split_oversized,
)
from scenechain.segmentation.text import estimate_tokens


def test_balanced_bounds_are_strictly_increasing():
    bounds = balanced_bounds([1] * 10, 3)
    assert bounds[-1] == 10
    assert all(a < b for a, b in zip(bounds, bounds[1:]))
    assert balanced_bounds([5, 5], 5) == [1, 2]


def test_even_split_produces_equal_chunks():
    script = "word " * 100
    chunks = even_split_chunks(script, 5)
    assert len(chunks) == 5
    tokens = [c.tokens for c in chunks]
    average = sum(tokens) / len(tokens)
    assert all(abs(t - average) / average <= 0.3 for t in tokens)


def test_even_split_never_exceeds_word_count():
    assert len(even_split_chunks("just three words", 10)) == 3


def test_duration_chunks_prefer_sentence_ends():
    # 12-word sentences with a 5s target (12.5 words) should cut on every sentence.
    sentence = "one two three four five six seven eight nine ten eleven twelve."
    chunks = duration_chunks(" ".join([sentence] * 4), 5.0)
    assert len(chunks) == 4
    assert all(c.ends_on_sentence for c in chunks)
    assert all(c.split_reason == "sentence_boundary" for c in chunks)


def test_duration_chunks_count_follows_word_total():
    words = ["w%d" % i for i in range(100)]
    chunks = duration_chunks(" ".join(words), 4.0)
    assert len(chunks) == 10
    assert " ".join(c.text for c in chunks).split() == words


def test_split_oversized_respects_token_limit():
    chunk = Chunk(text=" ".join(["abcdefg"] * 60), duration=30.0)
    parts = split_oversized([chunk], 20)
    assert len(parts) > 1
    assert all(estimate_tokens(p.text) <= 20 for p in parts)
    assert abs(sum(p.duration for p in parts) - 30.0) < 1e-6


def test_split_oversized_leaves_single_word():
    chunk = Chunk(text="x" * 400)
    assert split_oversized([chunk], 10) == [chunk]


def test_merge_to_limit_merges_smallest_adjacent_pair():
    chunks = [Chunk(text="a" * 40), Chunk(text="b" * 4), Chunk(text="c" * 4), Chunk(text="d" * 40)]
    merged = merge_to_limit(chunks, 3)
    assert [c.text for c in merged] == ["a" * 40, "b" * 4 + " " + "c" * 4, "d" * 40]
    assert len(merge_to_limit(chunks, 1)) == 1
