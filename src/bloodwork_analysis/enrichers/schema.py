# ============================================================================
# src/bloodwork_analysis/enrichers/schema.py
# ============================================================================
"""
Response contract for enrichment batches.

A batch response either validates completely (ValidatedBatch) or not at
all (BatchFailure). Partially valid arrays are rejected rather than
trimmed, so a malformed answer never leaks half-checked notes.
"""

from dataclasses import dataclass, field
from typing import Annotated, Any, List, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError


class NoteOut(BaseModel):
    """One note as returned by the text generation service."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    note: str = Field(
        min_length=4,
        max_length=200,
        validation_alias=AliasChoices("note", "aiNote"),
    )
    # Numbers only; "0.9" is a contract violation
    confidence: float = Field(ge=0.0, le=1.0, strict=True)


NoteBatchAdapter = TypeAdapter(Annotated[List[NoteOut], Field(min_length=1)])


@dataclass
class ValidatedBatch:
    notes: List[NoteOut] = field(default_factory=list)


@dataclass
class BatchFailure:
    reason: str


BatchOutcome = Union[ValidatedBatch, BatchFailure]


def unwrap_array(payload: Any) -> Any:
    """
    Find the note array inside a parsed response.

    Accepts a bare array, {"data": [...]}, or an object whose only list
    value is the array (JSON-object response modes force a wrapper).
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        if isinstance(payload.get("data"), list):
            return payload["data"]
        lists = [value for value in payload.values() if isinstance(value, list)]
        if len(lists) == 1:
            return lists[0]
    return payload


def parse_batch_response(payload: Any) -> BatchOutcome:
    """Validate a parsed response against the note contract."""
    if payload is None:
        return BatchFailure(reason="Response contained no JSON")

    array = unwrap_array(payload)
    if not isinstance(array, list):
        return BatchFailure(reason=f"Expected a JSON array, got {type(array).__name__}")

    try:
        notes = NoteBatchAdapter.validate_python(array)
    except PydanticValidationError as e:
        return BatchFailure(reason=f"{e.error_count()} contract violation(s): {e.errors()[0]['msg']}")

    return ValidatedBatch(notes=notes)
