import asyncio

from app.schemas.rule import RuleKind

TENANT_ID = "tenant-1"
VISITOR_ID = "visitor-1"


async def add_rule(store, kind, rule_id, keywords, match_type, response, is_html=False, tenant_id=TENANT_ID):
    return await store.save_rule(
        tenant_id,
        RuleKind(kind),
        {
            "id": rule_id,
            "keywords": keywords,
            "match_type": match_type,
            "response": response,
            "is_html": is_html,
        },
    )


async def settle(rounds: int = 5) -> None:
    """Let background consumer tasks drain their queues."""
    for _ in range(rounds):
        await asyncio.sleep(0)
