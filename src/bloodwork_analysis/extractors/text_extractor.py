# src/bloodwork_analysis/extractors/text_extractor.py
"""
Text extraction from stored lab reports.

Only machine-readable documents are supported:
1. PDF with a text layer: pdfplumber
2. Plain text files: read as UTF-8

Scanned documents come back empty and are reported as an extraction
error rather than guessed at.
"""

from pathlib import Path
from typing import List, Union
import logging

import pdfplumber

from ..utils.exceptions import TextExtractionError

PDF_EXTENSIONS = {'.pdf'}


class TextExtractor:
    """Read the text of a resolved document location."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def extract_text(self, location: Union[str, Path]) -> str:
        """
        Extract all text from a document.

        Args:
            location: Path of the stored document

        Returns:
            Document text, pages separated by newlines

        Raises:
            TextExtractionError: file missing, unreadable or without text
        """
        file_path = Path(location)
        if not file_path.is_file():
            raise TextExtractionError(f"Document not found at {file_path}")

        if file_path.suffix.lower() in PDF_EXTENSIONS:
            text = self._extract_pdf(file_path)
        else:
            text = self._extract_plain(file_path)

        if not text.strip():
            raise TextExtractionError(
                f"No machine-readable text in {file_path.name}"
            )

        self.logger.info(f"Extracted {len(text)} chars from {file_path.name}")
        return text

    def _extract_pdf(self, file_path: Path) -> str:
        pages: List[str] = []
        try:
            with pdfplumber.open(file_path) as pdf:
                for page_num, page in enumerate(pdf.pages):
                    text = page.extract_text() or ""
                    if not text.strip():
                        self.logger.debug(f"Page {page_num + 1} of {file_path.name} has no text layer")
                    pages.append(text)
        except Exception as e:
            self.logger.warning(f"pdfplumber extraction failed for {file_path.name}: {e}")
            raise TextExtractionError(f"PDF extraction failed: {e}") from e

        return "\n".join(pages)

    def _extract_plain(self, file_path: Path) -> str:
        try:
            return file_path.read_text(encoding='utf-8', errors='replace')
        except OSError as e:
            raise TextExtractionError(f"Could not read {file_path.name}: {e}") from e
