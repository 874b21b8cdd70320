import time
from typing import Optional, Protocol

import httpx

from app.config import get_settings
from app.logging_config import get_logger
from app.schemas.chat import WidgetSettings
from app.services.llm import LLMProvider, OpenAIProvider
from app.services.result import Result

logger = get_logger("ai_service")

LLM_MAX_TOKENS = 500
LLM_TEMPERATURE = 0.7

BASE_SYSTEM_PROMPT = (
    "You are {representative_name}, the website chat assistant for {business_name}. "
    "Answer visitor questions briefly and politely. "
    "If you do not know the answer, say that a team member will follow up."
)


class AICapability(Protocol):
    async def complete(self, text: str, context: Optional[str] = None, model: Optional[str] = None) -> str: ...


def build_ai_context(settings: WidgetSettings) -> str:
    """System prompt for a tenant: persona plus the business context the admin entered."""
    prompt = BASE_SYSTEM_PROMPT.format(
        representative_name=settings.representative_name,
        business_name=settings.business_name,
    )
    if settings.ai_context and settings.ai_context.strip():
        prompt += f"\n\nBusiness information:\n{settings.ai_context.strip()}"
    return prompt


class AIResponder:
    """Turns an LLM provider into the `complete(text, context)` capability."""

    def __init__(self, provider: LLMProvider, default_model: Optional[str] = None):
        self.provider = provider
        self.default_model = default_model

    async def complete(self, text: str, context: Optional[str] = None, model: Optional[str] = None) -> str:
        messages = []
        if context:
            messages.append({"role": "system", "content": context})
        messages.append({"role": "user", "content": text})

        started = time.monotonic()
        response = await self.provider.generate(
            messages,
            model=model or self.default_model,
            temperature=LLM_TEMPERATURE,
            max_tokens=LLM_MAX_TOKENS,
        )
        logger.info(
            "Timing",
            extra={
                "context": {
                    "stage": "ai_complete_ms",
                    "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                    "model_name": response.model,
                }
            },
        )
        return (response.content or "").strip()


async def ask_ai(ai: AICapability, text: str, context: Optional[str] = None, model: Optional[str] = None) -> Result[str]:
    """Call the AI capability without letting its failures escape."""
    try:
        reply = await ai.complete(text, context, model=model)
    except httpx.TimeoutException as e:
        logger.warning(f"AI timeout: {e}")
        return Result.failure(str(e), "ai_timeout")
    except Exception as e:
        logger.error(f"AI completion error: {e}", exc_info=True)
        return Result.from_exception(e, "ai_error")

    if not reply or not reply.strip():
        return Result.failure("AI returned empty text", "ai_empty")
    return Result.success(reply.strip())


_ai_responder: Optional[AIResponder] = None


def get_ai_responder() -> Optional[AIResponder]:
    """Shared responder built from config, or None when no API key is configured."""
    global _ai_responder
    if _ai_responder is None:
        config = get_settings()
        if not config.openai_api_key:
            logger.info("AI capability disabled: OPENAI_API_KEY is not set")
            return None
        provider = OpenAIProvider(
            api_key=config.openai_api_key,
            default_model=config.ai_default_model,
            base_url=config.openai_base_url,
            timeout_seconds=config.ai_timeout_seconds,
        )
        _ai_responder = AIResponder(provider, default_model=config.ai_default_model)
    return _ai_responder
