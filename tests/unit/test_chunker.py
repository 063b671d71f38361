"""Tests for the sliding-window chunker."""
import pytest

from papertrail.rag.chunker import TextChunker, chunk

# 100 characters per sentence
SENTENCE = "word " * 19 + "end. "


def _prose(sentences: int) -> str:
    return SENTENCE * sentences


class TestTextChunker:
    def test_empty_and_blank_text_yield_nothing(self):
        chunker = TextChunker()
        assert chunker.split("") == []
        assert chunker.split("   \n\n  ") == []

    def test_short_text_is_one_chunk(self):
        chunks = TextChunker().split("  A short note.  ")
        assert len(chunks) == 1
        assert chunks[0].content == "A short note."
        assert chunks[0].chunk_index == 0

    def test_4200_character_document_gives_three_chunks(self):
        text = _prose(42)
        assert len(text) == 4200

        chunks = TextChunker().split(text)

        assert len(chunks) == 3
        assert [len(c.content) for c in chunks] == [1599, 1599, 1399]
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        # Consecutive windows share the configured overlap
        assert chunks[1].char_start == chunks[0].char_end - 200
        assert chunks[2].char_start == chunks[1].char_end - 200

    def test_cuts_land_after_sentence_ends(self):
        for c in TextChunker().split(_prose(42))[:-1]:
            assert c.content.endswith("end.")

    def test_windows_cover_text_without_gaps(self):
        text = _prose(37) + "\n\nA closing paragraph without much punctuation " * 20
        chunks = TextChunker().split(text)

        assert chunks[0].char_start == 0
        assert chunks[-1].char_end == len(text)
        for previous, current in zip(chunks, chunks[1:]):
            assert current.char_start <= previous.char_end
            assert current.char_start > previous.char_start
        for c in chunks:
            assert c.content == text[c.char_start:c.char_end].strip()

    def test_chunk_length_bounded_by_overshoot(self):
        chunker = TextChunker(target_size=1500, overlap=200, lookahead=200)
        text = _prose(25) + "x" * 3000 + _prose(13)

        for c in chunker.split(text):
            assert len(c.content) <= 1500 * 1.13

    def test_break_past_the_overshoot_is_ignored(self):
        text = "a" * 1698 + ". " + "b" * 3000

        lengths = [len(piece) for piece in chunk(text)]

        assert max(lengths) <= 1500 * 1.13
        assert lengths[0] == 1500

    def test_break_inside_the_overshoot_is_used(self):
        text = "a" * 1690 + ". " + "b" * 3000

        assert len(chunk(text)[0]) == 1691

    def test_text_without_breaks_is_hard_cut(self):
        chunks = TextChunker().split("x" * 4000)
        assert [(c.char_start, c.char_end) for c in chunks] == [
            (0, 1500),
            (1300, 2800),
            (2600, 4000),
        ]

    def test_deterministic(self):
        text = _prose(55)
        first = TextChunker().split(text)
        second = TextChunker().split(text)
        assert first == second

    @pytest.mark.parametrize("overlap", [750, 1000, -1])
    def test_rejects_overlap_that_stalls_window(self, overlap):
        with pytest.raises(ValueError):
            TextChunker(target_size=1500, overlap=overlap)


def test_chunk_returns_strings():
    pieces = chunk(_prose(42))
    assert len(pieces) == 3
    assert all(isinstance(p, str) for p in pieces)
