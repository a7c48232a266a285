# ============================================================================
# src/bloodwork_analysis/utils/exceptions.py
# ============================================================================
"""
Custom exceptions for the bloodwork analysis engine.

`retryable` tells the work queue whether a failed delivery may be
attempted again. Only persistence problems are worth another attempt;
a document that could not be read will not read any better next time.
"""


class BloodworkAnalysisError(Exception):
    """Base exception for all bloodwork analysis errors."""

    retryable = True


class NotFoundError(BloodworkAnalysisError):
    """Job, document or result does not exist (or is not owned by the caller)."""
    retryable = False


class ConflictError(BloodworkAnalysisError):
    """A non-terminal job already exists for the same document and user."""
    retryable = False

    def __init__(self, message: str, existing_job_id: str = None):
        super().__init__(message)
        self.existing_job_id = existing_job_id


class InvalidStateError(BloodworkAnalysisError):
    """Operation not allowed in the job's current state."""
    retryable = False

    def __init__(self, message: str, current_status: str = None):
        super().__init__(message)
        self.current_status = current_status


class ExtractionError(BloodworkAnalysisError):
    """Error while reading the document or recognizing rows."""
    retryable = False


class TextExtractionError(ExtractionError):
    """Error reading text from a document."""
    pass


class EnrichmentDegraded(BloodworkAnalysisError):
    """Enrichment batch produced no usable notes; rows will use fallback notes."""
    retryable = False

    def __init__(self, message: str, batch_index: int = None):
        super().__init__(message)
        self.batch_index = batch_index


class ValidationError(EnrichmentDegraded):
    """Enrichment response did not satisfy the note contract."""
    pass


class PersistenceError(BloodworkAnalysisError):
    """Error writing job or result records."""
    retryable = True


class ConfigurationError(BloodworkAnalysisError):
    """Invalid configuration."""
    retryable = False
