from enum import Enum
from typing import Any, List

from pydantic import BaseModel, Field, field_validator

from app.logging_config import get_logger

logger = get_logger("schemas.rule")


class MatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    REGEX = "regex"
    SYNONYM = "synonym"
    UNMATCHED = "unmatched"  # unknown match_type from the store, never matches


class RuleKind(str, Enum):
    AUTO = "auto"
    ADVANCED = "advanced"


class Rule(BaseModel):
    id: str
    keywords: List[str] = Field(default_factory=list)
    match_type: MatchType = MatchType.UNMATCHED
    response: str = ""
    is_html: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        if value is None:
            raise ValueError("rule id is required")
        return str(value)

    @field_validator("keywords", mode="before")
    @classmethod
    def _coerce_keywords(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(keyword) for keyword in value if keyword is not None]

    @field_validator("match_type", mode="before")
    @classmethod
    def _known_match_type(cls, value: Any) -> MatchType:
        if isinstance(value, MatchType):
            return value
        try:
            return MatchType(str(value).strip().lower())
        except ValueError:
            logger.warning(
                "Unknown match type, rule will never match",
                extra={"context": {"match_type": value}},
            )
            return MatchType.UNMATCHED

    @classmethod
    def from_record(cls, record: dict) -> "Rule":
        """Build a rule from a raw store row (snake_case or camelCase columns)."""
        return cls(
            id=record.get("id"),
            keywords=record.get("keywords"),
            match_type=record.get("match_type", record.get("matchType")),
            response=record.get("response") or "",
            is_html=bool(record.get("is_html", record.get("isHtml", False))),
        )
