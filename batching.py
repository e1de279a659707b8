"""Content batching: per-article truncation and fixed-size grouping.

Provider response size grows with input size and recommendation count,
so the analyzer sends several smaller batches instead of one large call.
"""

from typing import Sequence, TypeVar

from models.source import TRANSCRIPT_MARKER

T = TypeVar("T")

# Below this much room a transcript fragment carries no useful signal
MIN_TRANSCRIPT_CHARS = 100


def truncate(content: str, max_length: int) -> str:
    """Shorten content to at most `max_length` characters.

    Content that fits is returned unchanged. Video content keeps its full
    description and as much of the transcript (after the marker line) as
    fits; if the description alone is too long it is hard-cut like any
    other content. Content without a marker is hard-cut.

    The result is a fixed point: truncating it again returns it unchanged.

    Raises:
        ValueError: If max_length is not positive
    """
    if max_length <= 0:
        raise ValueError(f"max_length must be positive, got {max_length}")
    if len(content) <= max_length:
        return content

    idx = content.find(TRANSCRIPT_MARKER)
    if idx == -1:
        return content[:max_length]

    description = content[:idx]
    if len(description) >= max_length:
        return content[:max_length]

    remaining = max_length - len(description)
    if remaining <= MIN_TRANSCRIPT_CHARS:
        return description.rstrip()
    return description + content[idx:idx + remaining]


def batch(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive groups of `size`; the last may be smaller.

    Raises:
        ValueError: If size is less than 1
    """
    if size < 1:
        raise ValueError(f"batch size must be at least 1, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]
