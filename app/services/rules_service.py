from dataclasses import dataclass, field
from typing import List

from pydantic import ValidationError

from app.logging_config import get_logger
from app.schemas.rule import Rule, RuleKind
from app.services.result import Result
from app.services.store.base import RecordStore

logger = get_logger("rules_service")


@dataclass
class RuleSets:
    advanced: List[Rule] = field(default_factory=list)
    auto: List[Rule] = field(default_factory=list)


def parse_rules(records: List[dict], kind: RuleKind) -> List[Rule]:
    """Validate raw store rows into rules, skipping rows that cannot be used."""
    rules = []
    for record in records:
        try:
            rule = Rule.from_record(record)
        except (ValidationError, AttributeError, TypeError) as e:
            record_id = record.get("id") if isinstance(record, dict) else None
            logger.warning(
                "Skipping malformed rule record",
                extra={"context": {"kind": kind.value, "record_id": record_id, "error": str(e)}},
            )
            continue
        if kind == RuleKind.AUTO and rule.is_html:
            # auto replies are plain text only
            rule = rule.model_copy(update={"is_html": False})
        rules.append(rule)
    return rules


class RuleRepository:
    """Read-only view of a tenant's rule sets. Always reads the latest snapshot."""

    def __init__(self, store: RecordStore, tenant_id: str):
        self.store = store
        self.tenant_id = tenant_id

    async def get_rules(self, kind: RuleKind) -> Result[List[Rule]]:
        try:
            records = await self.store.get_rules(self.tenant_id, kind)
        except Exception as e:
            logger.error(
                "Failed to load rules",
                extra={"context": {"tenant_id": self.tenant_id, "kind": kind.value, "error": str(e)}},
            )
            return Result.from_exception(e, "store_error")
        return Result.success(parse_rules(records, kind))

    async def load(self) -> RuleSets:
        """Both rule sets; a set that fails to load is treated as empty."""
        advanced = await self.get_rules(RuleKind.ADVANCED)
        auto = await self.get_rules(RuleKind.AUTO)
        return RuleSets(advanced=advanced.unwrap_or([]), auto=auto.unwrap_or([]))
