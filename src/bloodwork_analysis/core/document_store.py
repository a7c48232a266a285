# ============================================================================
# src/bloodwork_analysis/core/document_store.py
# ============================================================================
"""
Document Store

Resolves document references to stored files. Uploaded documents live in
UPLOAD_DIR as "<document_ref>.<ext>". Storing the binaries is someone
else's job; this module only finds them (and offers `save` for local
setups and tests).
"""

import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config.base_config import base_settings

logger = logging.getLogger(__name__)

# Sidecar file holding the uploader's original file name
NAME_SUFFIX = ".name"

# Refs are used in a glob, so keep them to plain identifier characters
_SAFE_REF = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_\-]*$')


@dataclass
class ResolvedDocument:
    exists: bool
    location: Optional[str] = None
    original_name: Optional[str] = None


class FileDocumentStore:
    """Filesystem-backed document lookup."""

    def __init__(self, upload_dir: Optional[Path] = None):
        self.upload_dir = Path(upload_dir or base_settings.UPLOAD_DIR)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def resolve(self, document_ref: str) -> ResolvedDocument:
        if not document_ref or not _SAFE_REF.match(document_ref):
            logger.warning(f"Rejected malformed document reference: {document_ref!r}")
            return ResolvedDocument(exists=False)

        matches = [
            path for path in sorted(self.upload_dir.glob(f"{document_ref}.*"))
            if path.suffix != NAME_SUFFIX
        ]
        if not matches:
            return ResolvedDocument(exists=False)

        file_path = matches[0]
        return ResolvedDocument(
            exists=True,
            location=str(file_path.resolve()),
            original_name=self._original_name(file_path),
        )

    def save(self, content: bytes, original_name: str) -> str:
        """Store a document and return its new reference."""
        document_ref = str(uuid.uuid4())
        suffix = Path(original_name).suffix.lower()
        if not suffix or suffix == NAME_SUFFIX:
            suffix = ".txt"
        target = self.upload_dir / f"{document_ref}{suffix}"
        target.write_bytes(content)

        # Keep the caller's file name next to the document
        (self.upload_dir / f"{document_ref}{NAME_SUFFIX}").write_text(original_name, encoding="utf-8")

        logger.info(f"Stored document {original_name} as {document_ref}")
        return document_ref

    def _original_name(self, file_path: Path) -> str:
        name_file = file_path.with_suffix(NAME_SUFFIX)
        if name_file.exists() and name_file != file_path:
            return name_file.read_text(encoding="utf-8").strip()
        return file_path.name
