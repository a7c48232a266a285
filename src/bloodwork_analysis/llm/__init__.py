"""
External text generation clients used for note enrichment.
"""

from .base import BackendType, BaseTextClient
from .client import create_text_client

__all__ = ["BackendType", "BaseTextClient", "create_text_client"]
