"""
services/structured_output.py

Typed reading of the ```json block the assistants are instructed to append
to their replies:

    ```json
    {
      "theory_update": {"fact_patterns": [...], "legal_arguments": [...],
                        "potential_outcomes": [...], "status": "..."},
      "insights": [{"title": "...", "description": "...", "insight_type": "key_fact"}]
    }
    ```

No block means nothing to write (``None``). A block that is not valid JSON
or does not fit the schema raises StructuredOutputError so the caller can
log it instead of silently dropping the update.
"""
from __future__ import annotations

import json
import re
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from app.db.models import InsightType
from app.utils.exceptions import StructuredOutputError

_JSON_BLOCK = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)


class TheoryUpdate(BaseModel):
    fact_patterns:      list[Any] = Field(default_factory=list)
    legal_arguments:    list[Any] = Field(default_factory=list)
    potential_outcomes: list[Any] = Field(default_factory=list)
    status:             Optional[str] = None


class InsightDraft(BaseModel):
    title:        str
    description:  str = ""
    insight_type: str = InsightType.general.value

    @field_validator("insight_type", mode="before")
    @classmethod
    def known_type_or_general(cls, v: Any) -> str:
        # auto_generated_event is reserved for the timeline generator
        allowed = {t.value for t in InsightType} - {InsightType.auto_generated_event.value}
        if isinstance(v, str) and v in allowed:
            return v
        return InsightType.general.value


class StructuredUpdate(BaseModel):
    theory_update: Optional[TheoryUpdate] = None
    insights:      list[InsightDraft] = Field(default_factory=list)

    @field_validator("insights", mode="before")
    @classmethod
    def null_insights(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def is_empty(self) -> bool:
        return self.theory_update is None and not self.insights


def extract_json_from_markdown(text: str | None) -> Any:
    """
    Return the parsed contents of the first ```json fenced block, or None
    when the text has no such block. Invalid JSON raises ValueError.
    """
    if not text:
        return None
    match = _JSON_BLOCK.search(text)
    if not match:
        return None
    return json.loads(match.group(1))


def parse_structured_update(text: str | None) -> Optional[StructuredUpdate]:
    try:
        data = extract_json_from_markdown(text)
    except ValueError as e:
        raise StructuredOutputError(f"Response contained a malformed JSON block: {e}") from e

    if data is None:
        return None
    if not isinstance(data, dict):
        raise StructuredOutputError(
            f"Expected a JSON object in the response block, got {type(data).__name__}"
        )

    try:
        return StructuredUpdate.model_validate(data)
    except ValidationError as e:
        raise StructuredOutputError(
            f"Response JSON block does not match the case update schema: {e.error_count()} error(s)"
        ) from e
