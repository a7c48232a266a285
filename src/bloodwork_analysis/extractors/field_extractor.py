# ============================================================================
# src/bloodwork_analysis/extractors/field_extractor.py
# ============================================================================
"""
Field Extractor

Turns report text into classified rows:

1. Window scan: slide a 3-line window over the trimmed, non-empty lines
   and test every registered pattern against it (first match wins).
2. Section scan: only when the window scan found nothing and the text has
   a "REFERENCE VALUES" section. Lower confidence, rows are tagged
   extraction_method="section".
3. Report date, patient name and panel type.

No match at all is a valid, empty result, not an error.
"""

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from ..classifiers.panel_classifier import determine_panel_type
from ..classifiers.status_classifier import classify
from ..core.models import ExtractedRow, ExtractionResult, ReferenceRange
from ..utils.logging import log_performance
from .field_patterns import FieldPattern, PatternRegistry, default_registry
from .parsing import DATE_PATTERNS, parse_range_match, parse_value_line

logger = logging.getLogger(__name__)

SECTION_MARKER = "REFERENCE VALUES"
WINDOW_SIZE = 3

# Labelled name on a single line; a bare "Name" needs a colon
PATIENT_NAME_PATTERNS = [
    re.compile(r"\bPatient[ \t]?Name[ \t]*:?[ \t]*([A-Za-z][A-Za-z .'-]*)", re.IGNORECASE),
    re.compile(r"\bName[ \t]*:[ \t]*([A-Za-z][A-Za-z .'-]*)", re.IGNORECASE),
]


def split_lines(text: str) -> List[str]:
    """Trimmed, non-empty lines."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def extract_report_date(text: str) -> Tuple[datetime, bool]:
    """
    Find the report date.

    Returns:
        (date at UTC midnight, True) for the first pattern that parses,
        otherwise (now, False).
    """
    for label, regex, parser in DATE_PATTERNS:
        match = regex.search(text)
        if not match:
            continue
        try:
            return parser(match.group(1)), True
        except ValueError as e:
            logger.warning(f"Failed to parse {label} date '{match.group(1)}': {e}")
            continue

    logger.warning("No valid date found in document, using current date")
    return datetime.now(timezone.utc), False


def extract_patient_name(text: str) -> Optional[str]:
    """Patient name as printed on the report, or None."""
    for regex in PATIENT_NAME_PATTERNS:
        match = regex.search(text)
        if not match:
            continue
        # Same-line columns ("JOHN DOE   Age: 45") are separated by runs of spaces
        name = re.split(r"\s{2,}", match.group(1).strip())[0].strip(" .-")
        if name:
            return name
    return None


class FieldExtractor:
    """Pattern-driven extractor. One instance per registry."""

    def __init__(self, registry: Optional[PatternRegistry] = None):
        self.registry = registry if registry is not None else default_registry()
        self.logger = logging.getLogger(__name__)

    @log_performance(logger, "Field extraction")
    def extract(self, text: str) -> ExtractionResult:
        lines = split_lines(text)
        self.logger.debug(f"Processing {len(lines)} lines")

        rows = self._scan_windows(lines)
        used_section = False

        if not rows and SECTION_MARKER in text:
            rows = self._scan_section(text[text.index(SECTION_MARKER):])
            used_section = bool(rows)

        if not rows:
            self.logger.warning("No test patterns matched the document")
            self.logger.debug(f"Sample lines: {' | '.join(lines[:10])}")

        report_date, date_found = extract_report_date(text)

        result = ExtractionResult(
            rows=rows,
            report_date=report_date,
            report_date_found=date_found,
            patient_name=extract_patient_name(text),
            panel_type=determine_panel_type(r.test_name for r in rows),
            used_section_fallback=used_section,
        )
        self.logger.info(
            f"Extracted {len(rows)} rows ({result.panel_type}), "
            f"method={'section' if used_section else 'window'}"
        )
        return result

    # ------------------------------------------------------------------
    # Window scan
    # ------------------------------------------------------------------

    def _scan_windows(self, lines: Sequence[str]) -> List[ExtractedRow]:
        rows: List[ExtractedRow] = []
        for i in range(len(lines) - WINDOW_SIZE + 1):
            name_line, range_line, value_line = lines[i:i + WINDOW_SIZE]
            for pattern in self.registry:
                row = self._match_window(pattern, name_line, range_line, value_line, len(rows) + 1)
                if row:
                    rows.append(row)
                    break
        return rows

    def _match_window(
        self,
        pattern: FieldPattern,
        name_line: str,
        range_line: str,
        value_line: str,
        row_number: int
    ) -> Optional[ExtractedRow]:
        if not pattern.matches_name(name_line):
            return None

        bounds = parse_range_match(pattern.match_range(range_line))
        value = parse_value_line(value_line)
        if bounds is None or value is None:
            return None

        return self._build_row(pattern, value, bounds, row_number, "window")

    # ------------------------------------------------------------------
    # Section scan
    # ------------------------------------------------------------------

    def _scan_section(self, section: str) -> List[ExtractedRow]:
        self.logger.debug(f"Found {SECTION_MARKER} section: {section[:200]!r}")
        rows: List[ExtractedRow] = []
        for pattern in self.registry:
            if pattern.section_pattern is None:
                continue
            match = pattern.section_pattern.search(section)
            if not match:
                continue
            bounds = parse_range_match(match)
            row = self._build_row(pattern, float(match.group(3)), bounds, len(rows) + 1, "section")
            if row:
                rows.append(row)
        return rows

    def _build_row(
        self,
        pattern: FieldPattern,
        value: float,
        bounds: Tuple[float, float],
        row_number: int,
        method: str
    ) -> Optional[ExtractedRow]:
        low, high = bounds
        try:
            reference_range = ReferenceRange(min=low, max=high)
        except ValueError as e:
            self.logger.warning(f"Skipping {pattern.display_name}: {e}")
            return None

        row = ExtractedRow(
            id=str(row_number),
            test_name=pattern.display_name,
            value=value,
            unit=pattern.unit,
            reference_range=reference_range,
            status=classify(value, low, high),
            extraction_method=method,
        )
        self.logger.debug(
            f"Parsed {row.test_name}: {value} {row.unit} ({low}-{high}) -> {row.status.value}"
        )
        return row


def extract_fields(text: str, registry: Optional[PatternRegistry] = None) -> ExtractionResult:
    """Convenience wrapper around FieldExtractor.extract."""
    return FieldExtractor(registry).extract(text)
