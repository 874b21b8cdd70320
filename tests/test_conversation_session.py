import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from app.config import Settings
from app.schemas.chat import DEFAULT_WELCOME_MESSAGE, OperatorMode, Sender
from app.schemas.widget import ConfigurationError
from app.services.conversation_session import ConversationSession
from app.services.state_machine import MessageStatus, SessionStatus
from app.services.store.base import StoreError
from app.services.store.memory import InMemoryStore
from helpers import TENANT_ID, VISITOR_ID, add_rule, settle


def contents(messages):
    return [m.content for m in messages]


def senders(messages):
    return [m.sender for m in messages]


class Gate:
    """Typing-delay stand-in that holds replies until released."""

    def __init__(self):
        self.event = asyncio.Event()
        self.calls = 0

    async def __call__(self, _delay):
        self.calls += 1
        await self.event.wait()

    def release(self):
        self.event.set()


class TestStart:
    @pytest.mark.asyncio
    async def test_creates_active_session(self, make_session, store):
        conversation = make_session()
        session = await conversation.start()

        assert conversation.status == SessionStatus.ACTIVE
        assert session.visitor_id == VISITOR_ID
        assert await store.get_session(session.id) is not None
        assert conversation.sync.is_attached

    @pytest.mark.asyncio
    async def test_start_twice_returns_same_session(self, make_session):
        conversation = make_session()
        first = await conversation.start()
        second = await conversation.start()
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_resumes_active_session_with_history(self, make_session):
        first = make_session()
        await first.start()
        await first.submit_visitor_message("hello")
        await first.wait_for_replies()
        await first.stop()

        second = make_session()
        await second.start()
        assert second.session_id == first.session_id
        assert contents(second.messages)[0] == "hello"
        assert len(second.messages) == 2

    @pytest.mark.asyncio
    async def test_closed_session_is_not_resumed(self, make_session):
        first = make_session()
        await first.start()
        await first.close()

        second = make_session()
        await second.start()
        assert second.session_id != first.session_id
        assert second.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unstarted_session_rejects_messages(self, make_session):
        conversation = make_session()
        assert await conversation.submit_visitor_message("hi") is None
        assert conversation.messages == []


class TestWidgetConfig:
    def test_missing_tenant_raises(self, store, config):
        with pytest.raises(ConfigurationError):
            ConversationSession.from_widget_config(store, {"business_name": "Shop"}, VISITOR_ID, config=config)

    def test_empty_config_raises(self, store, config):
        with pytest.raises(ConfigurationError):
            ConversationSession.from_widget_config(store, None, VISITOR_ID, config=config)

    @pytest.mark.asyncio
    async def test_overrides_apply_to_settings(self, store, config):
        conversation = ConversationSession.from_widget_config(
            store, {"tenant_id": TENANT_ID, "business_name": "Corner Shop"}, VISITOR_ID, config=config
        )
        await conversation.start()
        assert conversation.settings.business_name == "Corner Shop"
        await conversation.stop()


class TestVisitorMessages:
    @pytest.mark.asyncio
    async def test_message_shown_and_persisted_immediately(self, make_session, store):
        conversation = make_session()
        await conversation.start()

        message = await conversation.submit_visitor_message("  hello  ")

        assert message.content == "hello"
        assert message.sender == Sender.USER
        assert contents(conversation.messages) == ["hello"]
        assert [m.id for m in await store.list_messages(conversation.session_id)] == [message.id]

    @pytest.mark.asyncio
    async def test_fallback_reply_without_rules(self, make_session):
        conversation = make_session()
        await conversation.start()

        await conversation.submit_visitor_message("hello")
        await conversation.wait_for_replies()

        assert senders(conversation.messages) == [Sender.USER, Sender.BOT]
        assert conversation.messages[1].content == conversation.settings.fallback_message
        assert not conversation.is_typing

    @pytest.mark.asyncio
    async def test_auto_rule_reply(self, make_session, store):
        await add_rule(store, "auto", "hours", ["hours"], "fuzzy", "We open at 9")
        conversation = make_session()
        await conversation.start()

        await conversation.submit_visitor_message("What are your hours?")
        await conversation.wait_for_replies()

        reply = conversation.messages[-1]
        assert reply.sender == Sender.BOT
        assert reply.content == "We open at 9"
        assert reply.is_html is False

    @pytest.mark.asyncio
    async def test_advanced_rule_beats_auto_rule(self, make_session, store):
        await add_rule(store, "auto", "auto-price", ["price"], "fuzzy", "Auto price")
        await add_rule(store, "advanced", "adv-price", ["price"], "fuzzy", "<b>Prices</b>", is_html=True)
        conversation = make_session()
        await conversation.start()

        await conversation.submit_visitor_message("price please")
        await conversation.wait_for_replies()

        reply = conversation.messages[-1]
        assert reply.sender == Sender.AI
        assert reply.content == "<b>Prices</b>"
        assert reply.is_html is True

    @pytest.mark.asyncio
    async def test_rule_changes_apply_to_next_message(self, make_session, store):
        conversation = make_session()
        await conversation.start()

        await conversation.submit_visitor_message("price")
        await conversation.wait_for_replies()
        await add_rule(store, "auto", "price", ["price"], "exact", "It's free")
        await conversation.submit_visitor_message("price")
        await conversation.wait_for_replies()

        assert contents(conversation.messages)[-1] == "It's free"

    @pytest.mark.asyncio
    async def test_blank_message_rejected(self, make_session):
        conversation = make_session()
        await conversation.start()

        assert await conversation.submit_visitor_message("   ") is None
        assert await conversation.submit_visitor_message("") is None
        assert conversation.messages == []
        assert not conversation.is_typing

    @pytest.mark.asyncio
    async def test_ai_reply_when_enabled(self, make_session, store, ai):
        await store.update_settings(TENANT_ID, ai_enabled=True)
        conversation = make_session(ai=ai)
        await conversation.start()

        await conversation.submit_visitor_message("Tell me about you")
        await conversation.wait_for_replies()

        reply = conversation.messages[-1]
        assert reply.sender == Sender.AI
        assert reply.content == "AI answer"

    @pytest.mark.asyncio
    async def test_typing_delay_within_configured_range(self, make_session):
        delays = []

        async def record(delay):
            delays.append(delay)

        config = Settings(typing_delay_min_ms=1000, typing_delay_max_ms=1500, _env_file=None)
        conversation = make_session(config=config, sleep_func=record)
        await conversation.start()

        await conversation.submit_visitor_message("hi")
        await conversation.wait_for_replies()

        assert len(delays) == 1
        assert 1.0 <= delays[0] <= 1.5


class TestReplyPipeline:
    @pytest.mark.asyncio
    async def test_typing_shown_while_reply_pending(self, make_session):
        gate = Gate()
        conversation = make_session(sleep_func=gate)
        await conversation.start()

        await conversation.submit_visitor_message("hi")
        assert conversation.is_typing

        gate.release()
        await conversation.wait_for_replies()
        assert not conversation.is_typing

    @pytest.mark.asyncio
    async def test_replies_serialized_in_submission_order(self, make_session, store):
        await add_rule(store, "auto", "one", ["one"], "exact", "reply one")
        await add_rule(store, "auto", "two", ["two"], "exact", "reply two")
        gate = Gate()
        changes = []
        conversation = make_session(sleep_func=gate)
        conversation.notifications.on_change = lambda signal, value: changes.append((signal, value))
        await conversation.start()

        await conversation.submit_visitor_message("one")
        await conversation.submit_visitor_message("two")
        await settle()

        # second visitor message is not held back by the pending reply
        assert contents(conversation.messages) == ["one", "two"]
        assert conversation.is_typing

        gate.release()
        await conversation.wait_for_replies()

        assert contents(conversation.messages) == ["one", "two", "reply one", "reply two"]
        typing_changes = [change for change in changes if change[0] == "typing"]
        assert typing_changes == [("typing", True), ("typing", False)]

    @pytest.mark.asyncio
    async def test_close_during_pending_reply_moves_reply_to_dead_timeline(self, make_session, store):
        gate = Gate()
        conversation = make_session(sleep_func=gate)
        await conversation.start()

        await conversation.submit_visitor_message("hello")
        result = await conversation.close()
        assert result.ok

        gate.release()
        await conversation.wait_for_replies()

        assert contents(conversation.messages) == ["hello"]
        assert senders(conversation.dead_messages) == [Sender.BOT]
        stored = await store.list_messages(conversation.session_id)
        assert senders(stored) == [Sender.USER, Sender.BOT]
        assert not conversation.is_typing


class TestPersistenceFailures:
    @pytest.mark.asyncio
    async def test_local_copies_kept_when_store_fails(self, make_session, store):
        conversation = make_session()
        await conversation.start()

        with patch.object(store, "insert_message", AsyncMock(side_effect=StoreError("down"))):
            message = await conversation.submit_visitor_message("hello")
            await conversation.wait_for_replies()

        assert message is not None
        assert senders(conversation.messages) == [Sender.USER, Sender.BOT]
        assert await store.list_messages(conversation.session_id) == []

    @pytest.mark.asyncio
    async def test_rule_store_failure_falls_back(self, make_session, store):
        conversation = make_session()
        await conversation.start()

        with patch.object(store, "get_rules", AsyncMock(side_effect=StoreError("down"))):
            await conversation.submit_visitor_message("hello")
            await conversation.wait_for_replies()

        assert conversation.messages[-1].content == conversation.settings.fallback_message

    @pytest.mark.asyncio
    async def test_setting_change_kept_while_store_is_down(self, make_session, store):
        conversation = make_session()
        await conversation.start()
        down = AsyncMock(side_effect=StoreError("down"))

        with patch.object(store, "update_settings", down), patch.object(store, "get_settings", down):
            await conversation.set_operator_mode(OperatorMode.LIVE)
            await conversation.toggle_online_status()
            await conversation.submit_visitor_message("anyone?")
            await conversation.wait_for_replies()

        assert conversation.settings.operator_mode == OperatorMode.LIVE
        assert conversation.messages[-1].sender == Sender.AGENT

    @pytest.mark.asyncio
    async def test_failed_setting_change_yields_to_later_stored_value(self, make_session, store):
        first = make_session()
        await first.start()
        second = make_session(visitor_id="visitor-2")
        await second.start()

        with patch.object(store, "update_settings", AsyncMock(side_effect=StoreError("down"))):
            await first.set_operator_mode(OperatorMode.LIVE)
        assert first.settings.operator_mode == OperatorMode.LIVE

        await second.set_operator_mode(OperatorMode.AUTO)
        await second.toggle_online_status()
        await first.submit_visitor_message("anyone?")
        await first.wait_for_replies()

        assert first.settings.operator_mode == OperatorMode.AUTO
        assert first.messages[-1].sender == Sender.BOT
        assert first.messages[-1].content == first.settings.fallback_message


class TestServerAssignedIds:
    @pytest.mark.asyncio
    async def test_no_duplicates_when_store_assigns_ids(self, make_session):
        store = InMemoryStore(assign_ids=True)
        conversation = make_session(store=store)
        await conversation.start()

        await conversation.submit_visitor_message("hello")
        await conversation.wait_for_replies()
        await settle()

        stored_ids = [m.id for m in await store.list_messages(conversation.session_id)]
        timeline_ids = [m.id for m in conversation.messages]
        assert len(timeline_ids) == 2
        assert timeline_ids == stored_ids


class TestWelcome:
    @pytest.mark.asyncio
    async def test_welcome_added_once(self, make_session):
        conversation = make_session()
        await conversation.start()

        first = await conversation.welcome_if_empty()
        second = await conversation.welcome_if_empty()

        assert first.content == DEFAULT_WELCOME_MESSAGE
        assert second is None
        assert senders(conversation.messages) == [Sender.BOT]

    @pytest.mark.asyncio
    async def test_no_welcome_when_history_exists(self, make_session):
        conversation = make_session()
        await conversation.start()
        await conversation.submit_visitor_message("hi")
        await conversation.wait_for_replies()

        assert await conversation.welcome_if_empty() is None
        assert len(conversation.messages) == 2

    @pytest.mark.asyncio
    async def test_tenant_welcome_message(self, make_session, store):
        await store.update_settings(TENANT_ID, welcome_message="Hi from the shop")
        conversation = make_session()
        await conversation.start()

        await conversation.open_widget()

        assert contents(conversation.messages) == ["Hi from the shop"]


class TestWidgetVisibility:
    @pytest.mark.asyncio
    async def test_reply_while_closed_sets_unread(self, make_session):
        conversation = make_session()
        await conversation.start()

        await conversation.submit_visitor_message("hi")
        await conversation.wait_for_replies()

        assert conversation.has_unread
        assert conversation.has_new_message

    @pytest.mark.asyncio
    async def test_open_clears_unread_and_marks_read(self, make_session, store):
        conversation = make_session()
        await conversation.start()
        await conversation.submit_visitor_message("hi")
        await conversation.wait_for_replies()

        await conversation.open_widget()

        assert conversation.is_open
        assert not conversation.has_unread
        reply = conversation.messages[-1]
        assert reply.status == MessageStatus.READ
        assert reply.read_at is not None
        assert conversation.messages[0].status == MessageStatus.SENT

    @pytest.mark.asyncio
    async def test_reply_while_open_is_not_unread(self, make_session):
        conversation = make_session()
        await conversation.start()
        await conversation.open_widget()
        conversation.acknowledge()

        await conversation.submit_visitor_message("hi")
        await conversation.wait_for_replies()

        assert not conversation.has_unread

    @pytest.mark.asyncio
    async def test_close_widget_then_acknowledge(self, make_session):
        conversation = make_session()
        await conversation.start()
        await conversation.open_widget()
        conversation.close_widget()

        await conversation.submit_visitor_message("hi")
        await conversation.wait_for_replies()
        assert conversation.has_unread

        conversation.acknowledge()
        assert not conversation.has_unread


class TestOperatorControls:
    @pytest.mark.asyncio
    async def test_live_online_gives_acknowledgement(self, make_session, store, config):
        conversation = make_session()
        await conversation.start()

        await conversation.set_operator_mode(OperatorMode.LIVE)
        await conversation.toggle_online_status()
        await conversation.submit_visitor_message("anyone there?")
        await conversation.wait_for_replies()

        reply = conversation.messages[-1]
        assert reply.sender == Sender.AGENT
        assert reply.content == config.live_ack_message
        stored = await store.get_settings(TENANT_ID)
        assert stored.operator_mode == OperatorMode.LIVE
        assert stored.is_online is True

    @pytest.mark.asyncio
    async def test_live_offline_gives_fallback(self, make_session):
        conversation = make_session()
        await conversation.start()

        await conversation.set_operator_mode(OperatorMode.LIVE)
        await conversation.submit_visitor_message("anyone there?")
        await conversation.wait_for_replies()

        reply = conversation.messages[-1]
        assert reply.sender == Sender.BOT
        assert reply.content == conversation.settings.fallback_message

    @pytest.mark.asyncio
    async def test_toggle_twice_goes_offline(self, make_session):
        conversation = make_session()
        await conversation.start()

        await conversation.toggle_online_status()
        settings = await conversation.toggle_online_status()

        assert settings.is_online is False

    @pytest.mark.asyncio
    async def test_toggle_uses_tenant_status_across_sessions(self, make_session, store):
        first = make_session()
        await first.start()
        second = make_session(visitor_id="visitor-2")
        await second.start()

        await first.toggle_online_status()
        settings = await second.toggle_online_status()

        assert settings.is_online is False
        assert (await store.get_settings(TENANT_ID)).is_online is False

    @pytest.mark.asyncio
    async def test_operator_unread_cleared_when_going_online(self, make_session):
        conversation = make_session()
        await conversation.start()

        await conversation.submit_visitor_message("hello?")
        assert conversation.notifications.operator_has_unread

        await conversation.toggle_online_status()
        assert not conversation.notifications.operator_has_unread

    @pytest.mark.asyncio
    async def test_agent_message(self, make_session, store):
        conversation = make_session()
        await conversation.start()

        message = await conversation.submit_agent_message(" I'm here ")

        assert message.sender == Sender.AGENT
        assert message.content == "I'm here"
        assert not conversation.is_typing
        assert contents(await store.list_messages(conversation.session_id)) == ["I'm here"]
        assert await conversation.submit_agent_message("  ") is None


class TestClose:
    @pytest.mark.asyncio
    async def test_closed_session_rejects_messages(self, make_session):
        conversation = make_session()
        await conversation.start()
        await conversation.submit_visitor_message("hi")
        await conversation.wait_for_replies()

        result = await conversation.close()
        rejected = await conversation.submit_visitor_message("anyone?")

        assert result.ok
        assert result.value.status == SessionStatus.CLOSED
        assert rejected is None
        assert len(conversation.messages) == 2
        assert await conversation.submit_agent_message("late") is None
        assert not conversation.sync.is_attached

    @pytest.mark.asyncio
    async def test_close_twice_fails(self, make_session):
        conversation = make_session()
        await conversation.start()
        await conversation.close()

        result = await conversation.close()

        assert not result.ok
        assert result.error_code == "invalid_state"

    @pytest.mark.asyncio
    async def test_close_store_failure_keeps_session_active(self, make_session, store):
        conversation = make_session()
        await conversation.start()

        with patch.object(store, "update_session_status", AsyncMock(side_effect=StoreError("down"))):
            result = await conversation.close()

        assert not result.ok
        assert result.error_code == "store_error"
        assert conversation.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_remote_close_seen_by_widget(self, make_session, store):
        conversation = make_session()
        await conversation.start()

        await store.update_session_status(conversation.session_id, SessionStatus.CLOSED)
        await settle()

        assert conversation.status == SessionStatus.CLOSED
        assert await conversation.submit_visitor_message("hello") is None

    @pytest.mark.asyncio
    async def test_remote_close_drops_subscription(self, make_session, store):
        conversation = make_session()
        await conversation.start()
        assert conversation.sync.is_attached

        await store.update_session_status(conversation.session_id, SessionStatus.CLOSED)
        await settle(rounds=10)

        assert not conversation.sync.is_attached

    @pytest.mark.asyncio
    async def test_no_welcome_after_close(self, make_session):
        conversation = make_session()
        await conversation.start()
        await conversation.close()

        assert await conversation.welcome_if_empty() is None
        assert conversation.messages == []


class TestTwoViewsOfOneSession:
    @pytest.mark.asyncio
    async def test_agent_reply_reaches_visitor_view(self, make_session):
        visitor = make_session()
        await visitor.start()
        operator = make_session()
        await operator.start()
        assert operator.session_id == visitor.session_id

        await operator.submit_agent_message("Hello from support")
        await settle()

        assert contents(visitor.messages) == ["Hello from support"]
        assert visitor.has_unread
