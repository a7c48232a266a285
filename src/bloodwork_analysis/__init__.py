# ============================================================================
# src/bloodwork_analysis/__init__.py
# ============================================================================
"""
Bloodwork Analysis Engine

Turns an uploaded lab report into classified, annotated test rows:
- Job lifecycle with progress reporting
- Pattern-based field extraction and status classification
- Batched note enrichment with deterministic fallback
- Result aggregation and persistence
"""

__version__ = "0.1.0"
