"""Resume text extraction for uploaded PDF/DOCX/TXT files."""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import fitz  # PyMuPDF
import pdfplumber
from docx import Document
from docx.oxml.table import CT_Tbl
from docx.oxml.text.paragraph import CT_P
from docx.table import Table

from resumefind.core.errors import PdfExtractionError

logger = logging.getLogger("resumes.parsing")

UNREADABLE_PDF_MESSAGE = "Could not extract text content. This PDF may be image-based, scanned, or protected."


@dataclass
class ExtractedText:
    text: str
    page_count: int
    method: str

    @property
    def has_text(self) -> bool:
        return self.method != "none"


def _is_extraction_broken(text: str) -> bool:
    """
    Heuristic to check if text extraction resulted in one-char-per-line garbage.
    """
    if not text or not text.strip():
        return True

    lines = text.strip().split("\n")
    short_lines = sum(1 for line in lines if len(line.strip()) <= 2)
    # If more than 40% of lines are 1-2 chars, it's likely broken
    return len(lines) > 10 and (short_lines / len(lines)) > 0.4


def _pdfplumber_text(data: bytes) -> str:
    parts = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            # loose tolerance merges letter-spaced headings
            page_text = page.extract_text(x_tolerance=2, y_tolerance=3)
            if page_text:
                parts.append(page_text)
    return "\n".join(parts)


def extract_pdf_text(data: bytes) -> ExtractedText:
    """
    Extract text from PDF bytes. PyMuPDF first, pdfplumber when PyMuPDF's output looks broken.

    Raises PdfExtractionError when the bytes are not a loadable PDF. A valid PDF that yields
    no text (scanned, image-only, protected) returns UNREADABLE_PDF_MESSAGE instead.
    """
    if not data:
        raise PdfExtractionError("Empty file")
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:  # FileDataError subclasses RuntimeError
        logger.warning("PDF failed to load: %s", e)
        raise PdfExtractionError(f"Failed to process PDF: {e}") from e

    with doc:
        page_count = doc.page_count
        text = "\n\n".join(page.get_text("text").strip() for page in doc).strip()
    if not _is_extraction_broken(text):
        return ExtractedText(text=text, page_count=page_count, method="pymupdf")

    logger.info("PyMuPDF text empty or fragmented (%d pages); retrying with pdfplumber", page_count)
    try:
        text = _pdfplumber_text(data).strip()
    except Exception as e:  # pdfminer raises a wide range of parser errors
        logger.warning("pdfplumber failed: %s", e)
        text = ""
    if text:
        return ExtractedText(text=text, page_count=page_count, method="pdfplumber")
    return ExtractedText(text=UNREADABLE_PDF_MESSAGE, page_count=page_count, method="none")


def _extract_text_from_xml(element) -> str:
    """
    Collect <w:t> text recursively. Catches text boxes (w:txbxContent) that
    python-docx's paragraph API misses.
    """
    text_parts = []
    for node in element.iter():
        if node.tag.endswith("}t"):
            if node.text:
                text_parts.append(node.text)
        elif node.tag.endswith("}br") or node.tag.endswith("}cr") or node.tag.endswith("}p"):
            text_parts.append("\n")
        elif node.tag.endswith("}tab"):
            text_parts.append("\t")
    return "".join(text_parts).strip()


def extract_docx_text(data: bytes) -> str:
    """Body paragraphs and tables in document order; table cells joined with ' | '."""
    doc = Document(io.BytesIO(data))
    full_text = []
    for element in doc.element.body:
        if isinstance(element, CT_P):
            para_text = _extract_text_from_xml(element)
            if para_text:
                full_text.append(para_text)
        elif isinstance(element, CT_Tbl):
            table = Table(element, doc)
            for row in table.rows:
                row_text = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if row_text:
                    full_text.append(" | ".join(row_text))
    return "\n".join(full_text)


def parse_bytes_to_text(data: bytes, filename: str) -> str:
    """Dispatch on the file extension. Unknown extensions yield ''."""
    ext = os.path.splitext(filename or "")[1].lower()
    if ext == ".pdf":
        extracted = extract_pdf_text(data)
        return extracted.text if extracted.has_text else ""
    if ext == ".docx":
        try:
            return extract_docx_text(data)
        except Exception as e:  # python-docx surfaces zip and XML errors unwrapped
            logger.error("Error reading DOCX file %s: %s", filename, e)
            return ""
    if ext == ".txt":
        return data.decode("utf-8", errors="ignore")
    logger.warning("Unsupported resume file type: %s", filename)
    return ""


def parse_to_text(file_path: str | Path) -> str:
    """
    Main entry point to extract text from a stored file based on its extension.
    """
    path = Path(file_path)
    return parse_bytes_to_text(path.read_bytes(), path.name)
