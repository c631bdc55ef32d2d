"""
Entity Record Model

Records are schemaless: every collection stores open field maps. The only
fields the store itself relies on are the three invariant ones below.

DESIGN DECISION: The snapshot keeps plain JSON-able dicts. The Record
model is applied at the seam (create/update) to enforce the invariant
fields while letting every other field through untouched.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from luxeledger.utils.timestamps import parse_iso


class Record(BaseModel):
    """
    A single entity record.

    Invariants:
    - id is unique within its collection and stable for its lifetime
    - updated_date >= created_date
    """
    model_config = ConfigDict(extra="allow")

    id: str = Field(
        ...,
        min_length=1,
        description="Identifier, unique within the collection"
    )
    created_date: str = Field(
        ...,
        description="ISO-8601 creation time"
    )
    updated_date: str = Field(
        ...,
        description="ISO-8601 time of the last update"
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "Record":
        """Both dates must parse and updated_date cannot precede created_date."""
        try:
            created = parse_iso(self.created_date)
            updated = parse_iso(self.updated_date)
        except ValueError as e:
            raise ValueError(f"Invalid record timestamp: {e}") from e
        if updated < created:
            raise ValueError("updated_date cannot be before created_date")
        return self

    @property
    def extra_fields(self) -> dict[str, Any]:
        """The free-form extension fields."""
        return dict(self.model_extra or {})

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()
