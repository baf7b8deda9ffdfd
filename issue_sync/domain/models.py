"""
Domain models for issue-sync.

Defines the issue schema aligned with `db/init.sql` and the update envelope
carried on the queue. Both are pydantic models so decoding, validation and
the partial field set come from one place.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from issue_sync.exceptions import DecodeError

# Values a partial update treats as "not supplied", same as explicit nulls.
_ZERO_VALUES = ("", 0, datetime(1, 1, 1, tzinfo=timezone.utc))


class Issue(BaseModel):
    """
    Representation of a row in the `issues` table, as sent by producers.

    Every field is optional: producers send only what changed. The JSON key
    for the summary is capitalized (`Summary`); the lowercase field name is
    accepted as well.
    """

    id: Optional[int] = Field(None, description="Primary key, assigned upstream.")
    summary: Optional[str] = Field(None, alias="Summary", description="Short summary (column is 64 chars).")
    status: Optional[str] = Field(None, description="Workflow status (column is 64 chars).")
    di: Optional[int] = Field(None, description="Integer discriminant.")
    created_at: Optional[datetime] = Field(None, description="Row creation timestamp.")
    updated_at: Optional[datetime] = Field(None, description="Row update timestamp.")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "extra": "ignore",
        "strict": True,
    }

    def changes(self) -> Dict[str, Any]:
        """
        Column/value pairs to write, keyed by column name.

        Absent fields, explicit nulls and zero values (empty string, 0, the
        zero timestamp) are all left out, so a partial update never writes
        SQL NULL and never resets a column to its zero value.
        """
        return {
            column: value
            for column, value in self.model_dump(exclude_unset=True, exclude_none=True).items()
            if value not in _ZERO_VALUES
        }


class IssueUpdate(BaseModel):
    """
    Envelope consumed from the queue.

    `id` addresses the row to update. A nested `issue.id`, when present, is
    not used for addressing; it is written like any other supplied field.
    """

    id: int = Field(..., description="Identifier of the issue to update.")
    issue: Issue = Field(default_factory=Issue, description="Partial issue fields to apply.")

    model_config = {
        "frozen": True,
        "extra": "ignore",
        "strict": True,
    }

    @classmethod
    def from_body(cls, body: bytes) -> "IssueUpdate":
        """
        Decode a raw message body.

        Raises
        ------
        DecodeError
            If the body is not valid JSON or does not match the envelope shape.
        """
        try:
            return cls.model_validate_json(body)
        except ValidationError as exc:
            raise DecodeError(
                f"Invalid issue update payload: {exc.error_count()} error(s): "
                f"{exc.errors(include_url=False)[0]['msg']}",
                body=body,
            ) from exc

    def changes(self) -> Dict[str, Any]:
        return self.issue.changes()


__all__ = ["Issue", "IssueUpdate"]
