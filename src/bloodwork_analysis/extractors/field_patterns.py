# ============================================================================
# src/bloodwork_analysis/extractors/field_patterns.py
# ============================================================================
"""
Field Pattern Registry

Each recognizable test is one FieldPattern descriptor. The extractor
matches a descriptor against a three-line window:

    line i     test name         name_pattern
    line i+1   reference range   range_pattern (group 1 = min, group 2 = max)
    line i+2   measured value    bare decimal literal

Supporting a new test means registering a new descriptor; the extractor
itself does not change.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional

_NUM = r'(\d+(?:\.\d+)?)'


@dataclass(frozen=True)
class FieldPattern:
    key: str
    display_name: str
    unit: str
    name_pattern: re.Pattern
    range_pattern: re.Pattern
    family: str = "general"

    # Optional scan used on documents with a "REFERENCE VALUES" section:
    # group 1 = min, group 2 = max, group 3 = value
    section_pattern: Optional[re.Pattern] = None

    def matches_name(self, line: str) -> bool:
        return bool(self.name_pattern.search(line))

    def match_range(self, line: str) -> Optional[re.Match]:
        return self.range_pattern.search(line)


def _immunoglobulin(name: str) -> FieldPattern:
    return FieldPattern(
        key=name.lower(),
        display_name=name,
        unit="mg/dL",
        name_pattern=re.compile(rf'^{name}$', re.IGNORECASE),
        range_pattern=re.compile(r'^\((\d+)\s*-\s*(\d+)\s*mg/dL\)$'),
        family="immunology",
        section_pattern=re.compile(
            rf'{name}[\s\S]*?\((\d+)\s*-\s*(\d+)\s*mg/dL\)[\s\S]*?(\d+)'
        ),
    )


def _unit_range(unit: str) -> re.Pattern:
    return re.compile(rf'{_NUM}\s*-\s*{_NUM}\s*{re.escape(unit)}')


DEFAULT_PATTERNS: List[FieldPattern] = [
    _immunoglobulin("IgG"),
    _immunoglobulin("IgA"),
    _immunoglobulin("IgM"),
    FieldPattern(
        key="free_testosterone_index",
        display_name="Free Testosterone Index",
        unit="%",
        name_pattern=re.compile(r'Free\s+Testosterone\s+Index', re.IGNORECASE),
        # "(Male: 24.5 - 113.3)", only needs to open with a parenthesis
        range_pattern=re.compile(rf'^\(.*?{_NUM}\s*-\s*{_NUM}'),
        family="hormone",
    ),
    FieldPattern(
        key="shbg",
        display_name="SHBG",
        unit="nmol/L",
        name_pattern=re.compile(r'SHBG', re.IGNORECASE),
        range_pattern=_unit_range("nmol/L"),
        family="hormone",
    ),
    FieldPattern(
        key="testosterone",
        display_name="Testosterone",
        unit="nmol/L",
        name_pattern=re.compile(r'^Testosterone$', re.IGNORECASE),
        range_pattern=_unit_range("nmol/L"),
        family="hormone",
    ),
    FieldPattern(
        key="glucose",
        display_name="Glucose",
        unit="mg/dL",
        name_pattern=re.compile(r'^(Fasting\s+)?Glucose$', re.IGNORECASE),
        range_pattern=_unit_range("mg/dL"),
        family="metabolic",
    ),
    FieldPattern(
        key="total_cholesterol",
        display_name="Total Cholesterol",
        unit="mg/dL",
        name_pattern=re.compile(r'^(Total\s+)?Cholesterol$', re.IGNORECASE),
        range_pattern=_unit_range("mg/dL"),
        family="metabolic",
    ),
    FieldPattern(
        key="hemoglobin",
        display_name="Hemoglobin",
        unit="g/dL",
        name_pattern=re.compile(r'^(Hemoglobin|Haemoglobin|HGB)$', re.IGNORECASE),
        range_pattern=_unit_range("g/dL"),
        family="hematology",
    ),
]


class PatternRegistry:
    """Ordered collection of field patterns; earlier patterns win a window."""

    def __init__(self, patterns: Iterable[FieldPattern] = ()):
        self._patterns: Dict[str, FieldPattern] = {}
        for pattern in patterns:
            self.register(pattern)

    def register(self, pattern: FieldPattern) -> None:
        if pattern.key in self._patterns:
            raise ValueError(f"Field pattern already registered: {pattern.key}")
        self._patterns[pattern.key] = pattern

    def get(self, key: str) -> Optional[FieldPattern]:
        return self._patterns.get(key)

    def __iter__(self) -> Iterator[FieldPattern]:
        return iter(self._patterns.values())

    def __len__(self) -> int:
        return len(self._patterns)


def default_registry() -> PatternRegistry:
    """Fresh registry with the built-in patterns. Callers may register more."""
    return PatternRegistry(DEFAULT_PATTERNS)
