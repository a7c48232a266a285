"""
Document text and field extraction.
"""

from .field_extractor import FieldExtractor, extract_fields, extract_patient_name, extract_report_date
from .field_patterns import FieldPattern, PatternRegistry, default_registry
from .text_extractor import TextExtractor

__all__ = [
    "FieldExtractor",
    "FieldPattern",
    "PatternRegistry",
    "TextExtractor",
    "default_registry",
    "extract_fields",
    "extract_patient_name",
    "extract_report_date",
]
