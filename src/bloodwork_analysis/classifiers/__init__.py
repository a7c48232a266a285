"""
Classification of extracted values and documents.
"""

from .status_classifier import classify
from .panel_classifier import determine_panel_type

__all__ = ["classify", "determine_panel_type"]
