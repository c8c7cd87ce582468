"""Word-window chunking with overlap and exact character offsets."""

from shared.helper.HelperConfig import HelperConfig
from shared.models.document import TextChunk


class Chunker:
    """Splits normalised text into overlapping windows of words.

    Offsets assume words are separated by exactly one space, which holds for text
    that went through TextExtractor.preprocess(). For such text
    text[chunk.start_position:chunk.end_position] == chunk.text.
    """

    def __init__(self, helper_config: HelperConfig, chunk_size: int | None = None, overlap: int | None = None) -> None:
        self.logging = helper_config.get_logger()
        settings = helper_config.get_pipeline_settings()
        self.chunk_size = chunk_size if chunk_size is not None else settings.chunk_size
        self.overlap = overlap if overlap is not None else settings.chunk_overlap
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive.")
        if self.overlap < 0 or self.overlap >= self.chunk_size:
            raise ValueError(f"overlap ({self.overlap}) must be >= 0 and smaller than chunk_size ({self.chunk_size}).")

    def chunk(self, text: str) -> list[TextChunk]:
        """Split text into ordered chunks.

        Args:
            text (str): The (normalised) text.

        Returns:
            list[TextChunk]: The chunks, empty for blank input.
        """
        words = text.split()
        if not words:
            return []

        if len(words) <= self.chunk_size:
            return [TextChunk(id="chunk_0", text=text.strip(), start_position=0, end_position=len(text), chunk_index=0)]

        chunks: list[TextChunk] = []
        step = self.chunk_size - self.overlap
        start = 0
        # running length of " ".join(words[:start]), extended as the window moves
        joined_len = 0
        joined_upto = 0
        while True:
            end = min(start + self.chunk_size, len(words))
            chunk_text = " ".join(words[start:end])

            while joined_upto < start:
                joined_len += len(words[joined_upto]) + (1 if joined_upto > 0 else 0)
                joined_upto += 1
            start_position = joined_len + (1 if start > 0 else 0)

            chunks.append(TextChunk(
                id=f"chunk_{len(chunks)}",
                text=chunk_text,
                start_position=start_position,
                end_position=start_position + len(chunk_text),
                chunk_index=len(chunks),
            ))
            if end >= len(words):
                break
            start += step

        self.logging.debug("Chunked %d words into %d chunks (size=%d, overlap=%d).", len(words), len(chunks), self.chunk_size, self.overlap)
        return chunks
