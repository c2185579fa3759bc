"""Fixed-width text chunking.

Why this exists:
- Splits documents into the windows that become graph chunk nodes
- Maintains context across windows with a configurable overlap

The window advances by chunk_size - chunk_overlap characters, so the overlap
must be strictly smaller than the chunk size. That is checked when the
Chunker is built (via ChunkingConfig) instead of being detected mid-loop.
"""

from collections.abc import Iterator
from typing import Optional

from knowledge.config.schema import ChunkingConfig
from knowledge.observability.logging import get_logger

logger = get_logger(__name__)


def chunk_text(text: str, chunk_size: int, chunk_overlap: int) -> Iterator[tuple[str, int, int]]:
    """Split text into overlapping fixed-width windows.

    Args:
        text: Text to chunk
        chunk_size: Window width in characters
        chunk_overlap: Characters shared by consecutive windows

    Yields:
        Tuples of (chunk_text, start_char, end_char)

    Raises:
        ValueError: If chunk_size <= 0 or chunk_overlap is outside [0, chunk_size)
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValueError(
            f"chunk_overlap must be in [0, {chunk_size}), got {chunk_overlap}"
        )

    text_length = len(text)
    if text_length <= chunk_size:
        yield (text, 0, text_length)
        return

    step = chunk_size - chunk_overlap
    start = 0
    while start < text_length:
        end = min(start + chunk_size, text_length)
        yield (text[start:end], start, end)

        if end == text_length:
            break
        start += step


class Chunker:
    """Splits document content into overlapping fixed-size windows.

    Example:
        chunker = Chunker(chunk_size=1000, chunk_overlap=200)
        chunks = chunker.chunk(document.content)
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        config: Optional[ChunkingConfig] = None,
    ) -> None:
        """Initialize the chunker.

        Explicit sizes take precedence over config. Invalid sizes fall back
        to the defaults; an overlap that is not smaller than the chunk size
        raises immediately.

        Raises:
            ValueError: If chunk_overlap >= chunk_size after defaulting
        """
        config = config or ChunkingConfig()
        self.config = ChunkingConfig(
            chunk_size=config.chunk_size if chunk_size is None else chunk_size,
            chunk_overlap=config.chunk_overlap if chunk_overlap is None else chunk_overlap,
        )

    @property
    def chunk_size(self) -> int:
        return self.config.chunk_size

    @property
    def chunk_overlap(self) -> int:
        return self.config.chunk_overlap

    def chunk(self, content: str) -> list[str]:
        """Return the ordered windows of content."""
        chunks = [text for text, _, _ in chunk_text(content, self.chunk_size, self.chunk_overlap)]

        logger.debug(
            "content_chunked",
            content_length=len(content),
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            chunk_count=len(chunks),
        )

        return chunks
