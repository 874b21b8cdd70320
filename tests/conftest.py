from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from app.config import Settings
from app.services.conversation_session import ConversationSession
from app.services.store.memory import InMemoryStore
from helpers import TENANT_ID, VISITOR_ID


@pytest.fixture
def config():
    """Settings with no simulated typing delay."""
    return Settings(typing_delay_min_ms=0, typing_delay_max_ms=0, _env_file=None)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def ai():
    """AI capability double; tests set return_value / side_effect."""
    capability = AsyncMock()
    capability.complete.return_value = "AI answer"
    return capability


@pytest_asyncio.fixture
async def make_session(store, config):
    """Factory for conversation sessions bound to the shared in-memory store."""
    created = []

    def _make(visitor_id=VISITOR_ID, tenant_id=TENANT_ID, **kwargs):
        kwargs.setdefault("config", config)
        conversation = ConversationSession(kwargs.pop("store", store), tenant_id, visitor_id, **kwargs)
        created.append(conversation)
        return conversation

    yield _make

    for conversation in created:
        await conversation.wait_for_replies()
        await conversation.stop()
