"""Tests for per-article truncation and batching."""

import pytest

from batching import MIN_TRANSCRIPT_CHARS, batch, truncate
from models.source import TRANSCRIPT_MARKER


def _make_video(description: str, transcript: str) -> str:
    return f"{description}\n\n{TRANSCRIPT_MARKER}\n{transcript}"


class TestTruncate:
    def test_short_content_unchanged(self):
        assert truncate("hello", 10) == "hello"

    def test_exact_length_unchanged(self):
        assert truncate("a" * 10, 10) == "a" * 10

    def test_plain_content_hard_cut(self):
        assert truncate("abcdefghij", 4) == "abcd"

    def test_video_keeps_description_and_cuts_transcript(self):
        content = _make_video("D" * 200, "T" * 5000)
        result = truncate(content, 1000)
        assert len(result) <= 1000
        assert result.startswith("D" * 200)
        assert TRANSCRIPT_MARKER in result

    def test_video_without_room_for_transcript_keeps_description(self):
        description = "D" * 950
        result = truncate(_make_video(description, "T" * 5000), 1000)
        assert result == description
        assert TRANSCRIPT_MARKER not in result

    def test_video_description_longer_than_budget_hard_cut(self):
        result = truncate(_make_video("D" * 2000, "T" * 100), 500)
        assert result == "D" * 500

    def test_idempotent(self):
        for content in (_make_video("D" * 300, "T" * 4000), "x" * 9000, _make_video("D" * 990, "T" * 50)):
            once = truncate(content, 1000)
            assert truncate(once, 1000) == once
            assert len(once) <= 1000

    def test_transcript_threshold_boundary(self):
        # Exactly MIN_TRANSCRIPT_CHARS of room drops the transcript
        description = "D" * (1000 - MIN_TRANSCRIPT_CHARS)
        assert truncate(_make_video(description, "T" * 500), 1000) == description

    def test_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            truncate("abc", 0)


class TestBatch:
    def test_splits_with_smaller_last_batch(self):
        groups = batch(list(range(45)), 20)
        assert [len(g) for g in groups] == [20, 20, 5]
        assert [x for g in groups for x in g] == list(range(45))

    def test_empty_input(self):
        assert batch([], 20) == []

    def test_exact_multiple(self):
        assert [len(g) for g in batch(list(range(40)), 20)] == [20, 20]

    def test_rejects_size_below_one(self):
        with pytest.raises(ValueError):
            batch([1, 2], 0)
