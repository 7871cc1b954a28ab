"""Splits extracted text into overlapping windows that keep their char and line spans."""

from shared.models.ingestion import TextChunk

# Preferred break points, strongest first
SEPARATORS = ("\n\n", "\n", ". ", " ")


class ContentChunker:
    """Overlapping character windows with soft breaks at paragraph, line, sentence or word boundaries.

    Every chunk is a verbatim slice of the input: ``text[c.char_start:c.char_end] == c.text``.
    Consecutive chunks overlap by at most ``chunk_overlap`` characters and
    together cover the whole input.
    """

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive.")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size.")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def _find_break(self, text: str, start: int, end: int) -> int:
        # a break must leave more than the overlap behind so the window keeps moving forward
        lower = start + self.chunk_overlap + 1
        for separator in SEPARATORS:
            position = text.rfind(separator, lower, end)
            if position != -1:
                return position + len(separator)
        return end

    def split(self, text: str) -> list[TextChunk]:
        """Split text into chunks. Whitespace-only input yields no chunks."""
        if not text or not text.strip():
            return []

        # line number at each char offset = newlines before it + 1
        newline_offsets = [i for i, char in enumerate(text) if char == "\n"]

        def line_at(offset: int) -> int:
            low, high = 0, len(newline_offsets)
            while low < high:
                mid = (low + high) // 2
                if newline_offsets[mid] < offset:
                    low = mid + 1
                else:
                    high = mid
            return low + 1

        chunks: list[TextChunk] = []
        start = 0
        length = len(text)
        while start < length:
            end = min(start + self.chunk_size, length)
            if end < length:
                end = self._find_break(text, start, end)
            chunks.append(TextChunk(
                index=len(chunks),
                text=text[start:end],
                char_start=start,
                char_end=end,
                line_from=line_at(start),
                line_to=line_at(max(end - 1, start)),
            ))
            if end >= length:
                break
            start = max(end - self.chunk_overlap, start + 1)
        return chunks
