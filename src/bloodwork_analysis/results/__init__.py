"""
Result aggregation and persistence.
"""

from .aggregation import build_result, build_summary, compute_statistics
from .result_store import ResultStore

__all__ = ["ResultStore", "build_result", "build_summary", "compute_statistics"]
