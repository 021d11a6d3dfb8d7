"""Tests for message chunking."""

import pytest

from promptloop.schemas.common import Citation
from promptloop.services.chunking import (
    chunk_discord_content,
    chunk_fenced_text,
    chunk_plain_text,
    compose_message,
    update_code_fence_state,
)


def fence_lines(text: str) -> int:
    return sum(1 for line in text.split("\n") if line.strip().startswith("```"))


class TestChunkPlainText:
    """Tests for chunk_plain_text."""

    def test_short_text_single_chunk(self):
        assert chunk_plain_text("hello", 100) == ["hello"]

    def test_empty_text(self):
        assert chunk_plain_text("", 100) == []

    def test_lossless_and_bounded(self):
        text = "\n".join(f"line {i} with some words in it" for i in range(200))
        chunks = chunk_plain_text(text, 120)
        assert "".join(chunks) == text
        assert all(len(c) <= 120 for c in chunks)

    def test_prefers_newline_boundary(self):
        text = "a" * 60 + "\n" + "b" * 60
        assert chunk_plain_text(text, 100) == ["a" * 60 + "\n", "b" * 60]

    def test_falls_back_to_space(self):
        text = "a" * 60 + " " + "b" * 60
        assert chunk_plain_text(text, 100)[0] == "a" * 60 + " "

    def test_hard_cut_without_boundary(self):
        assert chunk_plain_text("x" * 250, 100) == ["x" * 100, "x" * 100, "x" * 50]

    def test_boundary_in_front_half_ignored(self):
        """A newline early in the window would waste space, so cut hard instead."""
        text = "ab\n" + "c" * 200
        assert len(chunk_plain_text(text, 100)[0]) == 100

    def test_invalid_max_len(self):
        with pytest.raises(ValueError):
            chunk_plain_text("abc", 0)


class TestUpdateCodeFenceState:
    """Tests for update_code_fence_state."""

    def test_opens_with_language(self):
        assert update_code_fence_state(None, "text\n```python\nx = 1") == "python"

    def test_opens_without_language(self):
        assert update_code_fence_state(None, "```\nx") == ""

    def test_closes(self):
        assert update_code_fence_state("python", "x = 1\n```\nafter") is None

    def test_balanced(self):
        assert update_code_fence_state(None, "```js\nx\n```") is None


class TestChunkFencedText:
    """Tests for chunk_fenced_text."""

    def test_each_chunk_balanced_and_bounded(self):
        code = "\n".join(f"value_{i} = compute({i})" for i in range(60))
        text = f"Intro paragraph.\n```python\n{code}\n```\nOutro paragraph."
        chunks = chunk_fenced_text(text, 200)

        assert len(chunks) > 1
        for chunk in chunks:
            assert len(chunk) <= 200
            assert fence_lines(chunk) % 2 == 0

    def test_long_body_at_discord_limit(self):
        chunks = chunk_fenced_text("x" * 4000, 1900)

        assert len(chunks) == 3
        for chunk in chunks:
            assert len(chunk) <= 1900
            assert fence_lines(chunk) % 2 == 0

    def test_reopens_with_language_tag(self):
        code = "\n".join(f"x{i} = {i}" for i in range(80))
        chunks = chunk_fenced_text(f"```python\n{code}\n```", 150)
        assert all(c.startswith("```python\n") for c in chunks)

    def test_plain_text_unchanged(self):
        text = "no fences here " * 40
        assert "".join(chunk_fenced_text(text, 100)) == text

    def test_unclosed_fence_closed_in_last_chunk(self):
        chunks = chunk_fenced_text("```\nopen block", 100)
        assert chunks == ["```\nopen block\n```"]


class TestChunkDiscordContent:
    """Tests for chunk_discord_content."""

    def test_under_cap_not_truncated(self):
        text = "word " * 100
        chunks = chunk_discord_content(text, 200, max_parts=10)
        assert "".join(chunks) == text

    def test_truncates_to_cap_with_notice(self):
        text = "\n".join(f"paragraph {i} " + "x" * 40 for i in range(100))
        chunks = chunk_discord_content(text, 200, max_parts=3)

        assert len(chunks) <= 3
        assert all(len(c) <= 200 for c in chunks)
        assert "".join(chunks).endswith("[Truncated: output exceeded 3 messages]")

    def test_truncated_code_stays_balanced(self):
        code = "\n".join(f"line_{i} = {i}" for i in range(300))
        chunks = chunk_discord_content(f"```python\n{code}\n```", 200, max_parts=2)

        assert len(chunks) <= 2
        for chunk in chunks:
            assert fence_lines(chunk) % 2 == 0


class TestComposeMessage:
    """Tests for compose_message."""

    def test_without_sources(self):
        assert compose_message("[Job] now", "Body") == "[Job] now\n\nBody"

    def test_with_sources(self):
        message = compose_message("T", "Body", [Citation(url="https://a.example", title="A")])
        assert message == "T\n\nBody\n\nSources:\n- A: https://a.example"
