"""Schemas and strict parsing for JSON produced by the LLM.

LLM replies are untrusted text. parse_llm_json() strips markdown fences, decodes the JSON
and validates it against one of the schemas below. Any shape mismatch (root is not an
object, a collection is not a list, an item is not an object) raises LLMParseFailedError,
callers turn that into an empty result. Field level clean-up (confidence clamping,
category defaulting, keyword capping) happens inside the validators so consumers only
ever see normalised values.
"""

import json
import math
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shared.models.errors import LLMParseFailedError
from shared.models.graph import EntityCategory

MAX_TOPIC_KEYWORDS = 10
DEFAULT_CONFIDENCE = 0.5

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ValueError("expected a scalar value")
    return str(value).strip()


def _coerce_confidence(value: Any) -> float:
    """Parse a confidence, fall back to 0.5 when missing, zero or unparsable, clamp to [0, 1]."""
    if isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(number) or number == 0:
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, number))


##########################################
################ SCHEMAS #################
##########################################

class _LLMSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RawEntity(_LLMSchema):
    name: str = ""
    category: EntityCategory = EntityCategory.OTHER
    confidence: float = DEFAULT_CONFIDENCE
    context: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value: Any) -> str:
        return _coerce_text(value)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> EntityCategory:
        return EntityCategory.parse(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _coerce_confidence(value)

    @field_validator("context", mode="before")
    @classmethod
    def _context(cls, value: Any) -> str | None:
        return _coerce_text(value) or None


class RawRelationship(_LLMSchema):
    source: str = ""
    target: str = ""
    relation_type: str = Field(default="RELATED_TO", alias="relationType")
    confidence: float = DEFAULT_CONFIDENCE
    context: str | None = None

    @field_validator("source", "target", mode="before")
    @classmethod
    def _names(cls, value: Any) -> str:
        return _coerce_text(value)

    @field_validator("relation_type", mode="before")
    @classmethod
    def _relation_type(cls, value: Any) -> str:
        return _coerce_text(value) or "RELATED_TO"

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _coerce_confidence(value)

    @field_validator("context", mode="before")
    @classmethod
    def _context(cls, value: Any) -> str | None:
        return _coerce_text(value) or None


class RawExtraction(_LLMSchema):
    entities: list[RawEntity] = Field(default_factory=list)
    relationships: list[RawRelationship] = Field(default_factory=list)

    @field_validator("entities", "relationships", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class RawTopic(_LLMSchema):
    name: str = ""
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    confidence: float = DEFAULT_CONFIDENCE

    @field_validator("name", "description", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _coerce_text(value)

    @field_validator("keywords", mode="before")
    @classmethod
    def _keywords(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        keywords = [str(k).strip() for k in value if isinstance(k, (str, int, float)) and str(k).strip()]
        return keywords[:MAX_TOPIC_KEYWORDS]

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _coerce_confidence(value)


class RawTopics(_LLMSchema):
    topics: list[RawTopic] = Field(default_factory=list)

    @field_validator("topics", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


##########################################
################ PARSING #################
##########################################

def strip_code_fences(content: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    cleaned = content.strip()
    cleaned = _FENCE_START.sub("", cleaned)
    cleaned = _FENCE_END.sub("", cleaned)
    return cleaned.strip()


def parse_llm_json(content: str | None, schema: type[SchemaT]) -> SchemaT:
    """Decode an LLM reply and validate it against a schema.

    Args:
        content (str | None): Raw completion text.
        schema (type[BaseModel]): Target schema, its root must be a JSON object.

    Returns:
        BaseModel: The validated and normalised instance.

    Raises:
        LLMParseFailedError: If the reply is empty, not JSON, or does not match the schema.
    """
    if not content or not content.strip():
        raise LLMParseFailedError("LLM returned an empty response.")

    try:
        data = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as e:
        raise LLMParseFailedError(f"LLM response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise LLMParseFailedError(f"LLM response root is {type(data).__name__}, expected an object.")

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise LLMParseFailedError(f"LLM response does not match {schema.__name__}: {e.error_count()} error(s)") from e
