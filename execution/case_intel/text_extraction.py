"""
Text Extraction for Uploaded Case Documents

Turns raw file bytes into plain text for chunking and classification.

- PDFs are read page by page with PyMuPDF; each page is prefixed with a
  "[Page N]" marker so the chunker can tag chunks with page numbers
- text/plain is decoded as UTF-8
- Images and PDFs without a text layer are reported as scanned with empty
  text (OCR is out of scope); classification then falls back to the filename
"""

import os
import logging
import mimetypes
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from .errors import ExtractionUnavailable

logger = logging.getLogger(__name__)

# Below this many characters a PDF is treated as having no text layer
MIN_TEXT_LAYER_CHARS = 10


@dataclass
class ExtractedText:
    """Plain text pulled out of a document plus quality indicators."""
    text: str = ""
    pages: int = 1
    is_scanned: bool = False
    word_count: int = 0
    method: str = "text"  # "pdf", "text", "ocr" or "filename"

    @property
    def is_usable(self) -> bool:
        return len(self.text.strip()) > MIN_TEXT_LAYER_CHARS

    def to_dict(self) -> dict:
        return {
            "pages": self.pages,
            "is_scanned": self.is_scanned,
            "word_count": self.word_count,
            "extraction_method": self.method,
        }


def _word_count(text: str) -> int:
    return len(text.split())


def extract_text_from_pdf(data: bytes) -> ExtractedText:
    """Extract the text layer of a PDF, one "[Page N]" block per page."""
    import fitz  # PyMuPDF

    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            page_count = len(doc)
            pages = []
            for page_num in range(page_count):
                page_text = doc[page_num].get_text().strip()
                if page_text:
                    pages.append(f"[Page {page_num + 1}]\n\n{page_text}")
    except (RuntimeError, ValueError) as e:
        raise ExtractionUnavailable(f"Could not open PDF: {e}") from e

    text = "\n\n".join(pages)
    body_chars = sum(len(p.split("\n\n", 1)[-1]) for p in pages)
    if body_chars <= MIN_TEXT_LAYER_CHARS:
        logger.info(f"PDF has no text layer ({page_count} pages), treating as scanned")
        return ExtractedText(text="", pages=max(page_count, 1), is_scanned=True, method="ocr")

    return ExtractedText(
        text=text,
        pages=max(page_count, 1),
        is_scanned=False,
        word_count=_word_count(text),
        method="pdf",
    )


def extract_text(data: bytes, mime_type: str) -> ExtractedText:
    """
    Extract plain text from raw document bytes.

    Args:
        data: File contents
        mime_type: MIME type of the file (e.g. "application/pdf")

    Returns:
        ExtractedText; images come back as scanned with empty text

    Raises:
        ExtractionUnavailable: Unsupported type or unreadable file
    """
    mime_type = (mime_type or "").lower()

    if mime_type == "application/pdf":
        return extract_text_from_pdf(data)

    if mime_type.startswith("image/"):
        logger.info(f"No OCR for {mime_type}, classifying from filename")
        return ExtractedText(text="", pages=1, is_scanned=True, method="ocr")

    if mime_type.startswith("text/"):
        text = data.decode("utf-8", errors="replace")
        return ExtractedText(text=text, pages=1, word_count=_word_count(text), method="text")

    raise ExtractionUnavailable(f"Unsupported file type: {mime_type or 'unknown'}")


def guess_mime_type(file_name: str, file_type: Optional[str] = None) -> str:
    """MIME type from a stored file_type (MIME or extension) or the file name."""
    if file_type:
        if "/" in file_type:
            return file_type
        guessed, _ = mimetypes.guess_type(f"file.{file_type.lstrip('.')}")
        if guessed:
            return guessed
    guessed, _ = mimetypes.guess_type(file_name or "")
    return guessed or "application/octet-stream"


class LocalFileLoader:
    """Reads stored document files from DOCUMENT_STORAGE_DIR."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or os.getenv("DOCUMENT_STORAGE_DIR", "document_files"))

    def load(self, storage_path: str) -> bytes:
        path = Path(storage_path)
        if not path.is_absolute():
            path = self.base_dir / path
        try:
            return path.read_bytes()
        except OSError as e:
            raise ExtractionUnavailable(f"Failed to read {path}: {e}") from e


class DocumentTextSource:
    """
    Loads a document's bytes and extracts its text.

    Never raises for extraction problems: a missing file, unsupported type or
    unreadable PDF yields empty text with method "filename", which tells the
    classifier to work from the file name instead.
    """

    def __init__(self, loader=None):
        self.loader = loader or LocalFileLoader()

    def get_text(self, document) -> ExtractedText:
        """
        Args:
            document: Any object with file_name, file_type and storage_path

        Returns:
            ExtractedText (possibly empty)
        """
        if not document.storage_path:
            logger.warning(f"Document {document.id} has no stored file, using filename")
            return ExtractedText(is_scanned=True, method="filename")

        try:
            data = self.loader.load(document.storage_path)
            return extract_text(data, guess_mime_type(document.file_name, document.file_type))
        except ExtractionUnavailable as e:
            logger.warning(f"Text extraction unavailable for {document.id}: {e}")
            return ExtractedText(is_scanned=True, method="filename")
