# ============================================================================
# src/bloodwork_analysis/config/base_config.py
# ============================================================================
"""
Base Configuration
- Data directory
- SQLite database for jobs and results
- Upload directory the document store resolves references against
"""

from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings

class BaseSettingsConfig(BaseSettings):
    # Root data directory
    DATA_DIR: Path = Field(
        default=Path("data"),
        description="Root directory for runtime data"
    )

    # Jobs, job events and results
    DATABASE_PATH: Path = Field(
        default=Path("data/bloodwork.db"),
        description="SQLite database holding jobs, job events and results"
    )

    # Uploaded documents, stored as <document_ref>.<ext>
    UPLOAD_DIR: Path = Field(
        default=Path("data/uploads"),
        description="Directory where uploaded lab reports are stored"
    )

    def create_directories(self):
        """Create all necessary directories if they don't exist"""
        dirs = [
            self.DATA_DIR,
            self.UPLOAD_DIR,
            self.DATABASE_PATH.parent
        ]
        for directory in dirs:
            directory.mkdir(parents=True, exist_ok=True)

# Global instance
base_settings = BaseSettingsConfig()
