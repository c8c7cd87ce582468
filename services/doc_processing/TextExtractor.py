"""Plain-text extraction for uploaded files.

Supported formats:
  PDF        : pypdf, with page count and title/author/subject.
  DOCX       : python-docx, paragraphs followed by table rows.
  DOC        : read with python-docx as well, legacy binary files fail with ExtractionFailedError.
  Plain text : UTF-8, an optional BOM is dropped.
"""

import asyncio
import io
import re

import docx
from pypdf import PdfReader

from shared.helper.HelperConfig import HelperConfig
from shared.models.document import DocumentMetadata, ExtractedText
from shared.models.errors import ExtractionFailedError, UnsupportedFormatError

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_DOC = "application/msword"
MIME_TXT = "text/plain"

SUPPORTED_MIME_TYPES = frozenset({MIME_PDF, MIME_DOCX, MIME_DOC, MIME_TXT})

_WHITESPACE = re.compile(r"\s+")
_ELLIPSIS_RUN = re.compile(r"\.{3,}")
_DASH_RUN = re.compile(r"-{3,}")
_DOUBLE_QUOTES = re.compile(r"[“”„‟«»]|``|''")
_SINGLE_QUOTES = re.compile(r"[‘’‚‛`]")


def _word_count(text: str) -> int:
    return len(text.split())


class TextExtractor:
    """Turns stored file bytes into plain text plus basic metadata."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()

    ##########################################
    ################# CORE ###################
    ##########################################

    @staticmethod
    def is_supported(mime_type: str) -> bool:
        return (mime_type or "").split(";")[0].strip().lower() in SUPPORTED_MIME_TYPES

    def extract(self, file_bytes: bytes, mime_type: str) -> ExtractedText:
        """Extract text and metadata from a file.

        Args:
            file_bytes (bytes): Raw file content.
            mime_type (str): MIME type given at upload (parameters like "; charset=" are ignored).

        Returns:
            ExtractedText: The raw (not yet preprocessed) text and its metadata.

        Raises:
            UnsupportedFormatError: If the MIME type is not supported.
            ExtractionFailedError: If the file cannot be parsed, carrying the cause.
        """
        base_type = (mime_type or "").split(";")[0].strip().lower()
        if base_type not in SUPPORTED_MIME_TYPES:
            raise UnsupportedFormatError(f"Unsupported file type: {mime_type}")

        try:
            if base_type == MIME_PDF:
                return self._extract_pdf(file_bytes)
            if base_type in (MIME_DOCX, MIME_DOC):
                return self._extract_docx(file_bytes)
            return self._extract_txt(file_bytes)
        except Exception as e:
            self.logging.error("Text extraction failed for %s file: %s", base_type, e)
            raise ExtractionFailedError(f"Failed to extract text from {base_type} file: {e}") from e

    async def do_extract(self, file_bytes: bytes, mime_type: str) -> ExtractedText:
        """extract() in a worker thread, parsing is CPU bound."""
        return await asyncio.to_thread(self.extract, file_bytes, mime_type)

    ##########################################
    ################ FORMATS #################
    ##########################################

    def _extract_pdf(self, file_bytes: bytes) -> ExtractedText:
        reader = PdfReader(io.BytesIO(file_bytes))
        text = "\n".join((page.extract_text() or "") for page in reader.pages)
        info = reader.metadata
        metadata = DocumentMetadata(
            title=(info.title or None) if info else None,
            author=(info.author or None) if info else None,
            subject=(info.subject or None) if info else None,
            page_count=len(reader.pages),
            word_count=_word_count(text),
        )
        return ExtractedText(text=text, metadata=metadata)

    def _extract_docx(self, file_bytes: bytes) -> ExtractedText:
        document = docx.Document(io.BytesIO(file_bytes))
        parts = [paragraph.text for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                parts.append(" ".join(cell.text for cell in row.cells))
        text = "\n".join(parts)
        return ExtractedText(text=text, metadata=DocumentMetadata(word_count=_word_count(text)))

    def _extract_txt(self, file_bytes: bytes) -> ExtractedText:
        text = file_bytes.decode("utf-8-sig", errors="replace")
        return ExtractedText(text=text, metadata=DocumentMetadata(word_count=_word_count(text)))

    ##########################################
    ############## NORMALISATION #############
    ##########################################

    @staticmethod
    def preprocess(text: str) -> str:
        """Normalise extracted text before chunking.

        Collapses whitespace (form feeds, line breaks and non-breaking spaces included)
        into single spaces, shortens runs of dots and dashes to three and replaces
        curly quotes with straight ones. Chunk offsets refer to this form.
        """
        cleaned = text.replace("\f", " ").replace("\u00a0", " ")
        cleaned = _WHITESPACE.sub(" ", cleaned).strip()
        cleaned = _ELLIPSIS_RUN.sub("...", cleaned)
        cleaned = _DASH_RUN.sub("---", cleaned)
        cleaned = _DOUBLE_QUOTES.sub('"', cleaned)
        cleaned = _SINGLE_QUOTES.sub("'", cleaned)
        return cleaned.strip()
