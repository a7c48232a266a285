# ============================================================================
# src/bloodwork_analysis/config/__init__.py
# ============================================================================
"""
Convenient imports for all settings
"""

from dotenv import load_dotenv

# Values from .env are visible to every settings class below
load_dotenv()

from .base_config import base_settings
from .queue_config import queue_settings
from .enrichment_config import enrichment_settings
from .logging_config import logging_settings
