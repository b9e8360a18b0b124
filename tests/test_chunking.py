"""Tests for character-window chunking of anchored segments."""

import pytest

from ingestrag.chunking import chunk_segments
from ingestrag.core.models import ContentSegment


def seg(text: str, start: float, end: float) -> ContentSegment:
    return ContentSegment(text=text, start=start, end=end)


class TestChunkSegments:
    def test_empty_input(self):
        assert chunk_segments([]) == []
        assert chunk_segments([seg("   ", 0, 1)]) == []

    def test_small_input_is_one_chunk(self):
        chunks = chunk_segments([seg("hello", 0, 5), seg("world", 5, 9)], window=100, overlap=10)

        assert len(chunks) == 1
        assert chunks[0].content == "hello world"
        assert chunks[0].anchor_start == 0
        assert chunks[0].anchor_end == 9

    def test_window_respected_and_ordinals_contiguous(self):
        segments = [seg(f"sentence number {i} here", i * 10, i * 10 + 10) for i in range(30)]

        chunks = chunk_segments(segments, window=100, overlap=20)

        assert len(chunks) > 1
        assert [c.ordinal for c in chunks] == list(range(len(chunks)))
        assert all(len(c.content) <= 100 for c in chunks)

    def test_anchors_follow_segments(self):
        segments = [seg("a" * 40, 0, 10), seg("b" * 40, 10, 20), seg("c" * 40, 20, 30)]

        chunks = chunk_segments(segments, window=90, overlap=0)

        assert [(c.anchor_start, c.anchor_end) for c in chunks] == [(0, 20), (20, 30)]
        assert chunks[1].content == "c" * 40

    def test_overlap_carries_trailing_words(self):
        segments = [seg("alpha beta gamma", 0, 1), seg("delta epsilon zeta", 1, 2)]

        chunks = chunk_segments(segments, window=30, overlap=11)

        assert [c.content for c in chunks] == [
            "alpha beta gamma",
            "beta gamma delta epsilon zeta",
        ]
        assert chunks[1].anchor_start == 1

    def test_overlap_is_cut_to_fit_window(self):
        segments = [seg("alpha beta gamma", 0, 1), seg("delta epsilon zeta", 1, 2)]

        chunks = chunk_segments(segments, window=20, overlap=11)

        assert [c.content for c in chunks] == ["alpha beta gamma", "delta epsilon zeta"]

    def test_no_chunk_exceeds_window_with_overlap(self):
        # Segments close to the window leave little room for the carried tail
        segments = [
            seg(" ".join(["word"] * n), i, i + 1) for i, n in enumerate([19, 3, 20, 1, 18, 20, 5])
        ]

        chunks = chunk_segments(segments, window=100, overlap=40)

        assert len(chunks) > 1
        assert all(len(c.content) <= 100 for c in chunks)
        assert chunks[1].content.startswith("word")

    def test_every_segment_text_is_covered(self):
        words = [f"w{i}" for i in range(200)]
        segments = [seg(w, i, i + 1) for i, w in enumerate(words)]

        chunks = chunk_segments(segments, window=50, overlap=10)

        joined = " ".join(c.content for c in chunks)
        assert all(w in joined.split() for w in words)

    def test_long_segment_is_split_with_interpolated_anchors(self):
        text = "x" * 250

        chunks = chunk_segments([seg(text, 100, 350)], window=100, overlap=0)

        assert len(chunks) == 3
        assert chunks[0].anchor_start == pytest.approx(100)
        assert chunks[0].anchor_end == pytest.approx(200)
        assert chunks[-1].anchor_end == pytest.approx(350)

    @pytest.mark.parametrize(("window", "overlap"), [(0, 0), (10, 10), (10, -1)])
    def test_invalid_window_or_overlap(self, window: int, overlap: int):
        with pytest.raises(ValueError):
            chunk_segments([seg("text", 0, 1)], window=window, overlap=overlap)
