"""Error Body Schema — tolerant pydantic view of server error payloads.

Invariants:
    - Parsing never fails on unknown keys (extra="ignore")
    - Both flat ({"message": ...}) and enveloped ({"error": {...}}) bodies are accepted
    - FastAPI-style {"detail": "..."} and {"detail": [{"loc": [...], "msg": ...}]} are accepted
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ErrorBody(BaseModel):
    """Fields the classifier reads from a JSON error response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message: str | None = None
    code: str | None = None
    field: str | None = None
    detail: Any = None
    errors: Any = None
    details: Any = None
    retry_after: float | None = Field(default=None, alias="retryAfter")

    @model_validator(mode="before")
    @classmethod
    def unwrap_envelope(cls, data: Any) -> Any:
        """Lift {"error": {...}} envelopes to the top level."""
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            merged = {k: v for k, v in data.items() if k != "error"}
            merged.update(data["error"])
            return merged
        return data

    @property
    def display_message(self) -> str | None:
        """Non-empty server message, falling back to a string `detail`."""
        for candidate in (self.message, self.detail):
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
        return None

    @property
    def raw_field_errors(self) -> Any:
        """First populated field-error container, in precedence order."""
        if isinstance(self.detail, list):
            return self.detail
        return self.errors if self.errors is not None else self.details
