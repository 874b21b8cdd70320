import re

from app.logging_config import get_logger
from app.schemas.rule import MatchType, Rule

logger = get_logger("keyword_matcher")

_WHITESPACE = re.compile(r"\s+")


def normalize_for_matching(text: str) -> str:
    return (text or "").lower().strip()


def _keywords(rule: Rule) -> list[str]:
    return [normalize_for_matching(keyword) for keyword in rule.keywords if keyword and keyword.strip()]


def _regex_matches(content: str, pattern: str, rule_id: str) -> bool:
    try:
        return re.search(pattern, content, re.IGNORECASE) is not None
    except re.error as e:
        logger.warning(
            "Invalid regex keyword, treated as non-matching",
            extra={"context": {"rule_id": rule_id, "pattern": pattern, "error": str(e)}},
        )
        return False


def matches(content: str, rule: Rule) -> bool:
    """Check whether a visitor message triggers the rule."""
    normalized = normalize_for_matching(content)

    if rule.match_type == MatchType.EXACT:
        return any(normalized == keyword for keyword in _keywords(rule))

    if rule.match_type == MatchType.FUZZY:
        return any(keyword in normalized for keyword in _keywords(rule))

    if rule.match_type == MatchType.REGEX:
        # Patterns run against the original text, not the lower-cased one
        return any(
            _regex_matches(content or "", keyword, rule.id)
            for keyword in rule.keywords
            if keyword and keyword.strip()
        )

    if rule.match_type == MatchType.SYNONYM:
        tokens = set(_WHITESPACE.split(normalized)) if normalized else set()
        return any(keyword in tokens for keyword in _keywords(rule))

    logger.warning(
        "Rule has no usable match type",
        extra={"context": {"rule_id": rule.id, "match_type": rule.match_type.value}},
    )
    return False


def first_match(content: str, rules: list[Rule]) -> Rule | None:
    """First rule in stored order that matches, or None."""
    for rule in rules:
        if matches(content, rule):
            return rule
    return None
