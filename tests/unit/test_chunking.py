"""Unit tests for fixed-width chunking."""

import pytest

from knowledge.config.schema import ChunkingConfig
from knowledge.core.chunking import Chunker, chunk_text


class TestChunkText:
    """Test the chunk_text window generator."""

    def test_short_text_is_single_chunk(self):
        """Text no longer than the window comes back whole."""
        assert list(chunk_text("hello", 10, 2)) == [("hello", 0, 5)]

    def test_text_equal_to_window_is_single_chunk(self):
        text = "a" * 10
        assert list(chunk_text(text, 10, 3)) == [(text, 0, 10)]

    def test_windows_step_by_size_minus_overlap(self):
        """Windows advance by chunk_size - chunk_overlap."""
        chunks = list(chunk_text("abcdefghij", 4, 1))

        assert [(start, end) for _, start, end in chunks] == [(0, 4), (3, 7), (6, 10)]
        assert [text for text, _, _ in chunks] == ["abcd", "defg", "ghij"]

    def test_last_window_is_clipped(self):
        chunks = list(chunk_text("abcdefghijk", 4, 0))

        assert [text for text, _, _ in chunks] == ["abcd", "efgh", "ijk"]

    def test_consecutive_windows_share_overlap(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(57))
        chunks = [c for c, _, _ in chunk_text(text, 10, 4)]

        for previous, current in zip(chunks, chunks[1:]):
            assert previous[-4:] == current[:4]

    @pytest.mark.parametrize("size,overlap", [(1, 0), (5, 4), (7, 3), (100, 99)])
    def test_terminates_and_respects_size(self, size, overlap):
        """Every window fits the size and the text is fully covered."""
        text = "x" * 250
        chunks = list(chunk_text(text, size, overlap))

        assert all(len(c) <= size for c, _, _ in chunks)
        assert chunks[0][1] == 0
        assert chunks[-1][2] == len(text)

    def test_empty_text(self):
        assert list(chunk_text("", 10, 2)) == [("", 0, 0)]

    @pytest.mark.parametrize("size,overlap", [(0, 0), (-1, 0), (5, 5), (5, 6), (5, -1)])
    def test_invalid_arguments_raise(self, size, overlap):
        with pytest.raises(ValueError):
            list(chunk_text("some text", size, overlap))


class TestChunker:
    """Test the Chunker class."""

    def test_defaults(self):
        chunker = Chunker()
        assert chunker.chunk_size == 1000
        assert chunker.chunk_overlap == 200

    def test_invalid_values_fall_back_to_defaults(self):
        """Non-positive size and negative overlap use 1000 / 200."""
        chunker = Chunker(chunk_size=0, chunk_overlap=-5)
        assert chunker.chunk_size == 1000
        assert chunker.chunk_overlap == 200

    def test_overlap_not_below_size_fails_fast(self):
        with pytest.raises(ValueError):
            Chunker(chunk_size=100, chunk_overlap=100)

    def test_defaulted_size_checked_against_overlap(self):
        """A defaulted size of 1000 still rejects an overlap of 1500."""
        with pytest.raises(ValueError):
            Chunker(chunk_size=-1, chunk_overlap=1500)

    def test_explicit_values_override_config(self):
        chunker = Chunker(chunk_size=50, config=ChunkingConfig(chunk_size=500, chunk_overlap=20))
        assert chunker.chunk_size == 50
        assert chunker.chunk_overlap == 20

    def test_chunk_short_content(self):
        assert Chunker(chunk_size=20, chunk_overlap=5).chunk("hello world") == ["hello world"]

    def test_chunk_long_content(self):
        chunks = Chunker(chunk_size=10, chunk_overlap=2).chunk("x" * 30)

        assert len(chunks) == 4
        assert all(len(c) <= 10 for c in chunks)
