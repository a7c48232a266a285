# src/bloodwork_analysis/extractors/parsing.py
"""
Parsing utilities for lab value extraction.
"""

import re
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

# A value line holds nothing but a plain decimal literal: "14", "0.85"
VALUE_LINE_RE = re.compile(r'^(\d+(?:\.\d+)?)$')


def parse_value_line(line: str) -> Optional[float]:
    """
    Parse a line that should contain only a measured value.

    Rejects anything with a flag, unit or comparator attached:
    - "14.2"      -> 14.2
    - "14.2 H"    -> None
    - "< 0.5"     -> None
    """
    if not line:
        return None
    match = VALUE_LINE_RE.match(line.strip())
    if not match:
        return None
    return float(match.group(1))


def parse_range_match(match: Optional[re.Match]) -> Optional[Tuple[float, float]]:
    """
    Turn a range regex match into (low, high).

    The pattern must capture the lower bound in group 1 and the upper
    bound in group 2.
    """
    if not match:
        return None
    try:
        return float(match.group(1)), float(match.group(2))
    except (IndexError, TypeError, ValueError):
        return None


# ----------------------------------------------------------------------
# Dates
# ----------------------------------------------------------------------

def _utc_midnight(year: int, month: int, day: int) -> datetime:
    # Raises ValueError for impossible dates like 31/02/2025
    return datetime(year, month, day, tzinfo=timezone.utc)


def _parse_day_first(raw: str, sep: str) -> datetime:
    day, month, year = raw.split(sep)
    return _utc_midnight(int(year), int(month), int(day))


def _parse_year_first(raw: str) -> datetime:
    year, month, day = raw.split('-')
    return _utc_midnight(int(year), int(month), int(day))


def _parse_time_prefixed(raw: str) -> datetime:
    # "17:58:00 31/07/2025" -> keep the date part
    return _parse_day_first(raw.split()[-1], '/')


# Tried in order; the first one that yields a valid date wins
DATE_PATTERNS: List[Tuple[str, re.Pattern, Callable[[str], datetime]]] = [
    ("d/m/Y", re.compile(r'(\d{1,2}/\d{1,2}/\d{4})'), lambda s: _parse_day_first(s, '/')),
    ("d-m-Y", re.compile(r'(\d{1,2}-\d{1,2}-\d{4})'), lambda s: _parse_day_first(s, '-')),
    ("Y-m-d", re.compile(r'(\d{4}-\d{1,2}-\d{1,2})'), _parse_year_first),
    ("H:M:S d/m/Y", re.compile(r'(\d{1,2}:\d{2}:\d{2}\s+\d{1,2}/\d{1,2}/\d{4})'), _parse_time_prefixed),
]
