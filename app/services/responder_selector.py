"""
Responder selection for visitor messages.

Precedence (first decisive outcome wins):
1. advanced rules  -> sender "ai", html allowed
2. auto rules      -> sender "bot", plain text
3. AI capability   -> sender "ai" (only when enabled; failures fall through)
4. live operator   -> sender "agent" acknowledgement (live mode and online)
5. fallback        -> sender "bot", tenant fallback message
"""

from typing import Optional

from app.config import get_settings
from app.logging_config import get_logger
from app.schemas.chat import OperatorMode, Reply, ResponderSource, Sender, WidgetSettings
from app.services.ai_service import AICapability, ask_ai, build_ai_context
from app.services.keyword_matcher import first_match
from app.services.rules_service import RuleSets

logger = get_logger("responder_selector")


def select_rule_reply(content: str, rule_sets: RuleSets) -> Optional[Reply]:
    """Synchronous part of the chain: advanced rules, then auto rules."""
    rule = first_match(content, rule_sets.advanced)
    if rule is not None:
        return Reply(
            text=rule.response,
            sender=Sender.AI,
            is_html=rule.is_html,
            source=ResponderSource.ADVANCED_RULE,
            rule_id=rule.id,
        )

    rule = first_match(content, rule_sets.auto)
    if rule is not None:
        return Reply(
            text=rule.response,
            sender=Sender.BOT,
            is_html=False,
            source=ResponderSource.AUTO_RULE,
            rule_id=rule.id,
        )
    return None


def is_live_agent_available(settings: WidgetSettings) -> bool:
    return settings.operator_mode == OperatorMode.LIVE and settings.is_online


def fallback_reply(settings: WidgetSettings, live_ack_message: Optional[str] = None) -> Reply:
    """Steps 4-5: live acknowledgement when an operator is online, else the fallback message."""
    if is_live_agent_available(settings):
        return Reply(
            text=live_ack_message or get_settings().live_ack_message,
            sender=Sender.AGENT,
            source=ResponderSource.LIVE_ACK,
        )
    return Reply(
        text=settings.fallback_message,
        sender=Sender.BOT,
        source=ResponderSource.FALLBACK,
    )


async def select_response(
    content: str,
    rule_sets: RuleSets,
    settings: WidgetSettings,
    ai: Optional[AICapability] = None,
    live_ack_message: Optional[str] = None,
) -> Reply:
    """Pick exactly one reply for a visitor message. Never returns None and never raises for AI failures."""
    reply = select_rule_reply(content, rule_sets)
    if reply is not None:
        logger.debug(f"Rule matched: source={reply.source.value}, rule_id={reply.rule_id}")
        return reply

    if settings.ai_enabled:
        if ai is None:
            logger.warning(
                "AI enabled but no AI capability configured",
                extra={"context": {"tenant_id": settings.tenant_id}},
            )
        else:
            result = await ask_ai(ai, content, build_ai_context(settings), model=settings.ai_model)
            if result.ok:
                return Reply(text=result.value, sender=Sender.AI, source=ResponderSource.AI)
            logger.info(
                "AI reply unavailable, falling through",
                extra={"context": {"tenant_id": settings.tenant_id, "error_code": result.error_code}},
            )

    return fallback_reply(settings, live_ack_message)
