"""
Split generated text into transport-sized message parts.

Two splitters:
- `chunk_plain_text`: boundary-preferring split, lossless on concatenation.
- `chunk_fenced_text`: same split, but keeps every part's ``` code fences
  balanced by closing an open fence at the end of a part and reopening it
  (with the same language tag) at the start of the next.

`chunk_discord_content` adds a cap on the number of parts, truncating the
source text with a notice when the cap would be exceeded.
"""

from promptloop.pipeline.prompt_compile import format_sources_text
from promptloop.schemas.common import Citation

FENCE = "```"
TRUNCATION_NOTICE = "\n\n[Truncated: output exceeded {max_parts} messages]"


def _split_index(text: str, max_len: int) -> int:
    """Length of the next piece of `text` that fits in `max_len`.

    Prefers cutting right after the last newline, then the last space, as long
    as that boundary sits in the back half of the window. Otherwise cuts hard.
    """
    if len(text) <= max_len:
        return len(text)

    window = text[:max_len]
    half = max_len // 2
    for boundary in ("\n", " "):
        idx = window.rfind(boundary)
        if idx >= half:
            return idx + 1
    return max_len


def chunk_plain_text(text: str, max_len: int) -> list[str]:
    """Split text into pieces of at most `max_len` characters.

    Boundary characters stay at the end of the piece they terminate, so
    `"".join(chunks) == text`.
    """
    if max_len <= 0:
        raise ValueError("max_len must be positive")

    chunks: list[str] = []
    rest = text
    while rest:
        cut = _split_index(rest, max_len)
        chunks.append(rest[:cut])
        rest = rest[cut:]
    return chunks


def update_code_fence_state(state: str | None, text: str) -> str | None:
    """Track ``` fences through `text`.

    Args:
        state: Language tag of the fence open before `text` ("" for an
            untagged fence), or None when no fence is open
        text: Text to scan, line by line

    Returns:
        The fence state after `text`, in the same form
    """
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped.startswith(FENCE):
            continue
        if state is None:
            state = stripped[len(FENCE) :].strip()
        else:
            state = None
    return state


def _close_fence(piece: str) -> str:
    return piece + FENCE if piece.endswith("\n") else piece + "\n" + FENCE


def chunk_fenced_text(text: str, max_len: int) -> list[str]:
    """Split text so that every part independently has balanced code fences."""
    reserve = len(FENCE) + 1  # room for a synthetic "\n```"
    chunks: list[str] = []
    state: str | None = None
    rest = text

    while rest:
        prefix = f"{FENCE}{state}\n" if state is not None else ""
        end_state = update_code_fence_state(state, rest)
        tail = len(FENCE) + 1 if end_state is not None else 0
        if len(prefix) + len(rest) + tail <= max_len:
            final = prefix + rest
            chunks.append(_close_fence(final) if end_state is not None else final)
            break

        budget = max_len - len(prefix) - reserve
        if budget <= 0:
            raise ValueError(f"max_len {max_len} is too small for fenced chunking")

        cut = _split_index(rest, budget)
        piece, rest = rest[:cut], rest[cut:]
        state_after = update_code_fence_state(state, piece)

        chunk = prefix + piece
        if state_after is not None:
            chunk = _close_fence(chunk)
        chunks.append(chunk)
        state = state_after

    return chunks


def chunk_discord_content(text: str, max_len: int, max_parts: int = 10) -> list[str]:
    """Fence-aware chunking capped at `max_parts` messages.

    When the natural split needs more parts, the text is cut to fit roughly
    `max_parts * max_len` characters (with room for a truncation notice) and
    re-chunked, shrinking further until the cap holds.
    """
    chunks = chunk_fenced_text(text, max_len)
    if len(chunks) <= max(1, max_parts):
        return chunks

    max_parts = max(1, max_parts)
    notice = TRUNCATION_NOTICE.format(max_parts=max_parts)
    limit = max_parts * max_len - len(notice)
    step = max(1, max_len // 4)

    while limit > 0:
        head = text[:limit].rstrip()
        if update_code_fence_state(None, head) is not None:
            head = _close_fence(head + "\n")
        chunks = chunk_fenced_text(head + notice, max_len)
        if len(chunks) <= max_parts:
            return chunks
        limit -= step

    return chunk_fenced_text(notice.strip(), max_len)[:max_parts]


def compose_message(title: str, body: str, citations: list[Citation] | None = None) -> str:
    """Title, body and an optional Sources section as one message."""
    text = f"{title}\n\n{body}"
    sources = format_sources_text(citations or [])
    if sources:
        text = f"{text}\n\n{sources}"
    return text
