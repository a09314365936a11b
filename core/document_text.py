"""Raw text extraction for stored evidence documents."""
from __future__ import annotations

import logging

import pymupdf  # PyMuPDF for PDF handling

from .file_types import TEXT_MIME_TYPES

logger = logging.getLogger(__name__)

MAX_TEXT_CHARS = 20000
MAX_PDF_PAGES = 10


def extract_text(data: bytes, mime_type: str) -> str | None:
    """
    Best-effort raw text for a document.

    PDFs are read with PyMuPDF, plain text and CSV are decoded. Anything else
    (images, office documents) yields None.
    """
    if mime_type == "application/pdf":
        return _pdf_text(data)
    if mime_type in TEXT_MIME_TYPES:
        return data.decode("utf-8", errors="replace")[:MAX_TEXT_CHARS]
    return None


def _pdf_text(data: bytes) -> str | None:
    try:
        doc = pymupdf.open(stream=data, filetype="pdf")
    except Exception as exc:
        logger.warning("[documents] could not open PDF: %s", exc)
        return None
    try:
        chunks = []
        for page_num in range(min(MAX_PDF_PAGES, len(doc))):
            chunks.append(doc[page_num].get_text())
    finally:
        doc.close()
    text = "\n".join(chunk.strip() for chunk in chunks if chunk.strip())
    return text[:MAX_TEXT_CHARS] or None


def render_pdf_first_page(data: bytes) -> bytes | None:
    """PNG render of the first page, for scanned PDFs without a text layer."""
    try:
        doc = pymupdf.open(stream=data, filetype="pdf")
    except Exception as exc:
        logger.warning("[documents] could not open PDF for rendering: %s", exc)
        return None
    try:
        if len(doc) == 0:
            return None
        pix = doc[0].get_pixmap(matrix=pymupdf.Matrix(2, 2))
        return pix.tobytes("png")
    finally:
        doc.close()
