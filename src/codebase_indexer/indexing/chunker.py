"""Line-aligned chunker.

Chunks are built from whole lines and never exceed ``max_chunk_size``
characters. A single line longer than the limit is cut into fixed-size
pieces that all report that line's number. Output depends only on the text
and the limit, so identical content always yields identical chunks.
"""

from typing import List

from .types import Chunk


class Chunker:
    """Splits text into bounded, line-aligned chunks."""

    def __init__(self, max_chunk_size: int = 2000):
        if max_chunk_size < 1:
            raise ValueError("max_chunk_size must be positive")
        self.max_chunk_size = max_chunk_size

    def chunk_text(self, text: str) -> List[Chunk]:
        """Split text into chunks with 1-based inclusive line ranges.

        Args:
            text: Text to chunk

        Returns:
            Chunks in file order; empty for blank text
        """
        if not text or not text.strip():
            return []

        chunks: List[Chunk] = []
        buffer: List[str] = []
        buffer_size = 0
        buffer_start = 1

        def flush(end_line: int) -> None:
            nonlocal buffer, buffer_size
            content = "".join(buffer)
            if content.strip():
                chunks.append(Chunk(content, buffer_start, end_line, len(chunks)))
            buffer = []
            buffer_size = 0

        for line_no, line in enumerate(text.splitlines(keepends=True), start=1):
            if len(line) > self.max_chunk_size:
                if buffer:
                    flush(line_no - 1)
                for offset in range(0, len(line), self.max_chunk_size):
                    piece = line[offset : offset + self.max_chunk_size]
                    if piece.strip():
                        chunks.append(Chunk(piece, line_no, line_no, len(chunks)))
                buffer_start = line_no + 1
                continue

            if buffer_size + len(line) > self.max_chunk_size:
                flush(line_no - 1)
                buffer_start = line_no

            if not buffer:
                buffer_start = line_no
            buffer.append(line)
            buffer_size += len(line)

        if buffer:
            flush(buffer_start + len(buffer) - 1)

        return chunks
