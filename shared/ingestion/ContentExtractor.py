"""Turns uploaded bytes into plain text for PDF, DOCX and text/plain files."""

import asyncio
import io
import zipfile

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from shared.exceptions.errors import ExtractionFailed

MIME_PDF = "application/pdf"
MIME_TEXT = "text/plain"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

SUPPORTED_MIME_TYPES = (MIME_PDF, MIME_TEXT, MIME_DOCX)


def _extract_pdf(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(page.strip() for page in pages if page.strip())


def _extract_docx(data: bytes) -> str:
    document = Document(io.BytesIO(data))
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


def _extract_text(data: bytes) -> str:
    # utf-8-sig drops a leading BOM
    return data.decode("utf-8-sig", errors="replace")


_EXTRACTORS = {
    MIME_PDF: _extract_pdf,
    MIME_DOCX: _extract_docx,
    MIME_TEXT: _extract_text,
}


class ContentExtractor:
    def __init__(self, logger) -> None:
        self.logging = logger

    async def extract(self, data: bytes, mime_type: str, filename: str) -> str:
        """Extract plain text from an upload.

        Parsing runs in a worker thread since pypdf and python-docx are synchronous.

        Args:
            data (bytes): Raw file content.
            mime_type (str): One of SUPPORTED_MIME_TYPES.
            filename (str): Used for logging only.

        Returns:
            str: The extracted text with line endings normalised to "\\n".

        Raises:
            ExtractionFailed: If the file cannot be parsed or contains no text.
        """
        extractor = _EXTRACTORS.get(mime_type)
        if extractor is None:
            raise ExtractionFailed(f"No extractor for MIME type '{mime_type}'")
        try:
            text = await asyncio.to_thread(extractor, data)
        except (PdfReadError, PackageNotFoundError, zipfile.BadZipFile, ValueError, KeyError, OSError) as exc:
            self.logging.error("Text extraction failed for '%s' (%s): %s", filename, mime_type, exc)
            raise ExtractionFailed(f"Could not parse '{filename}'") from exc

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        if not text.strip():
            self.logging.warning("No text extracted from '%s' (%s).", filename, mime_type)
            raise ExtractionFailed(f"'{filename}' contains no extractable text")
        return text
