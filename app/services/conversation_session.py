import asyncio
import random
from typing import Awaitable, Callable, List, Optional, Tuple

from app.config import Settings, get_settings
from app.logging_config import session_logger
from app.schemas.chat import ChatMessage, ChatSession, OperatorMode, Reply, Sender, WidgetSettings
from app.schemas.widget import WidgetConfig, load_widget_config
from app.services.ai_service import AICapability
from app.services.notification_service import TypingNotificationController
from app.services.responder_selector import select_response
from app.services.result import Result
from app.services.rules_service import RuleRepository
from app.services.state_machine import MessageStatus, SessionStatus, activate, close
from app.services.store.base import RecordStore
from app.services.timeline import TimelineSynchronizer

SleepFunc = Callable[[float], Awaitable[None]]


class ConversationSession:
    """One visitor's conversation: timeline, lifecycle, reply pipeline and widget signals.

    Constructed explicitly and handed to whoever needs it (HTTP layer,
    operator tools); there is no process-wide conversation object.
    """

    def __init__(
        self,
        store: RecordStore,
        tenant_id: str,
        visitor_id: str,
        ai: Optional[AICapability] = None,
        config: Optional[Settings] = None,
        widget_config: Optional[WidgetConfig] = None,
        sleep_func: SleepFunc = asyncio.sleep,
    ):
        self.store = store
        self.tenant_id = tenant_id
        self.visitor_id = visitor_id
        self.ai = ai
        self.config = config or get_settings()
        self.widget_config = widget_config
        self._sleep = sleep_func

        self.session: Optional[ChatSession] = None
        self.status = SessionStatus.UNINITIALIZED
        self.settings = WidgetSettings(tenant_id=tenant_id)

        self.rules = RuleRepository(store, tenant_id)
        self.notifications = TypingNotificationController()
        self.sync = TimelineSynchronizer(
            on_new_message=self.notifications.on_message,
            on_session_update=self._on_session_update,
        )

        self._reply_lock = asyncio.Lock()
        self._reply_tasks: set[asyncio.Task] = set()
        self._teardown_task: Optional[asyncio.Task] = None
        self._welcomed = False
        self.log = session_logger("conversation_session", "-", tenant_id)

    @classmethod
    def from_widget_config(cls, store: RecordStore, raw_config: Optional[dict], visitor_id: str, **kwargs):
        """Build a session from the embed config. Raises ConfigurationError without a tenant id."""
        widget_config = load_widget_config(raw_config)
        return cls(store, widget_config.tenant_id, visitor_id, widget_config=widget_config, **kwargs)

    # --- read accessors -------------------------------------------------

    @property
    def session_id(self) -> Optional[str]:
        return self.session.id if self.session else None

    @property
    def messages(self) -> List[ChatMessage]:
        return self.sync.timeline.messages

    @property
    def dead_messages(self) -> List[ChatMessage]:
        return self.sync.dead_timeline.messages

    @property
    def is_typing(self) -> bool:
        return self.notifications.is_typing

    @property
    def has_unread(self) -> bool:
        return self.notifications.has_unread

    @property
    def has_new_message(self) -> bool:
        return self.notifications.has_new_message

    @property
    def is_open(self) -> bool:
        return self.notifications.is_open

    # --- lifecycle ------------------------------------------------------

    async def start(self) -> ChatSession:
        """Create or resume the visitor's session and subscribe to its changes."""
        if self.session is not None:
            return self.session

        await self.refresh_settings()
        session, created = await self.store.get_or_create_session(self.tenant_id, self.visitor_id)
        self.session = session
        self.log = session_logger("conversation_session", session.id, self.tenant_id)
        self.status = activate(self.status)

        await self.sync.attach(self.store.subscribe(session.id))

        if not created:
            for message in await self.store.list_messages(session.id):
                self.sync.timeline.merge(message)

        self.log.info("Session started", context={"created": created, "messages": len(self.messages)})
        return session

    async def stop(self) -> None:
        """Detach from the change feed without closing the session."""
        if self._teardown_task is not None:
            await self._teardown_task
            self._teardown_task = None
        await self.sync.detach()

    async def close(self) -> Result[ChatSession]:
        """Administrator action: active -> closed. Terminal."""
        if self.status != SessionStatus.ACTIVE or self.session is None:
            return Result.failure(f"Cannot close from state {self.status.value}", "invalid_state")

        try:
            session = await self.store.update_session_status(self.session.id, SessionStatus.CLOSED)
        except Exception as e:
            self.log.error("Failed to close session", context={"error": str(e)})
            return Result.from_exception(e, "store_error")

        self._mark_closed(session)
        await self.sync.detach()
        return Result.success(session)

    def _mark_closed(self, session: Optional[ChatSession] = None) -> None:
        if self.status == SessionStatus.CLOSED:
            return
        self.status = close(self.status)
        if session is not None:
            self.session = session
        self.sync.mark_closed()
        self.log.info("Session closed")

    def _on_session_update(self, session: ChatSession) -> None:
        if session.status != SessionStatus.CLOSED or self.status == SessionStatus.CLOSED:
            return
        self._mark_closed(session)
        # closed elsewhere: drop the subscription outside the consumer task
        self._teardown_task = asyncio.create_task(self.sync.detach())

    # --- settings -------------------------------------------------------

    async def refresh_settings(self) -> WidgetSettings:
        """Reload tenant settings; keeps the previous snapshot if the store is unavailable.

        The stored values are tenant-wide and win over any local change whose
        write failed earlier.
        """
        try:
            settings = await self.store.get_settings(self.tenant_id)
        except Exception as e:
            self.log.warning("Failed to load settings, using last snapshot", context={"error": str(e)})
            return self.settings

        if self.widget_config is not None:
            settings = self.widget_config.apply_overrides(settings)
        self.settings = settings
        self.notifications.set_operator_online(settings.is_online)
        return settings

    async def _save_setting(self, field: str, value) -> WidgetSettings:
        self.settings = self.settings.model_copy(update={field: value})
        try:
            await self.store.update_settings(self.tenant_id, **{field: value})
        except Exception as e:
            # local change stays in effect until the next successful refresh
            self.log.error("Failed to persist setting", context={"field": field, "value": value, "error": str(e)})
        return self.settings

    async def set_operator_mode(self, mode: OperatorMode) -> WidgetSettings:
        return await self._save_setting("operator_mode", OperatorMode(mode))

    async def toggle_online_status(self) -> WidgetSettings:
        """Flip the tenant's current online status, not this session's snapshot."""
        await self.refresh_settings()
        online = not self.settings.is_online
        self.notifications.set_operator_online(online)
        return await self._save_setting("is_online", online)

    # --- widget surface -------------------------------------------------

    async def open_widget(self) -> None:
        self.notifications.open()
        await self.welcome_if_empty()
        await self.mark_read()

    def close_widget(self) -> None:
        self.notifications.close()

    def acknowledge(self) -> None:
        self.notifications.acknowledge()

    async def welcome_if_empty(self) -> Optional[ChatMessage]:
        """Greet an empty timeline once per session instance."""
        if self._welcomed or self.status != SessionStatus.ACTIVE:
            return None
        self._welcomed = True
        if len(self.sync.timeline) > 0:
            return None

        message = self._new_message(self.settings.welcome_message, Sender.BOT)
        self.sync.accept(message)
        await self._persist(message)
        return message

    async def mark_read(self) -> int:
        """Mark delivered replies as read once the visitor has seen them."""
        count = 0
        for message in self.messages:
            if message.sender == Sender.USER or message.status == MessageStatus.READ:
                continue
            try:
                updated = await self.store.update_message_status(message.id, MessageStatus.READ)
            except Exception as e:
                self.log.warning("Failed to mark message read", context={"message_id": message.id, "error": str(e)})
                continue
            self.sync.apply_update(updated)
            count += 1
        return count

    # --- messages -------------------------------------------------------

    def _new_message(self, content: str, sender: Sender, is_html: bool = False) -> ChatMessage:
        return ChatMessage(session_id=self.session.id, content=content, sender=sender, is_html=is_html)

    def _accepts_messages(self, content: Optional[str]) -> Tuple[bool, str]:
        if self.status != SessionStatus.ACTIVE or self.session is None:
            self.log.info("Message rejected: session not active", context={"status": self.status.value})
            return False, ""
        text = (content or "").strip()
        if not text:
            self.log.info("Message rejected: empty content")
            return False, ""
        return True, text

    async def _persist(self, message: ChatMessage) -> Optional[ChatMessage]:
        """Write a locally shown message to the store. On failure the local copy stays."""
        try:
            confirmed = await self.store.insert_message(message)
        except Exception as e:
            self.log.warning(
                "Message kept locally without a durable copy",
                context={"message_id": message.id, "sender": message.sender.value, "error": str(e)},
            )
            return None
        if confirmed.id != message.id:
            self.sync.reconcile(message.id, confirmed)
        return confirmed

    async def submit_visitor_message(self, content: str) -> Optional[ChatMessage]:
        """Show and persist a visitor message, then schedule its reply."""
        accepted, text = self._accepts_messages(content)
        if not accepted:
            return None

        message = self._new_message(text, Sender.USER)
        self.sync.accept(message)
        await self._persist(message)

        self.notifications.begin_typing()
        task = asyncio.create_task(self._reply_to(message))
        self._reply_tasks.add(task)
        task.add_done_callback(self._reply_tasks.discard)
        return message

    async def submit_agent_message(self, content: str) -> Optional[ChatMessage]:
        """Live operator reply from the live-chat surface. No responder selection."""
        accepted, text = self._accepts_messages(content)
        if not accepted:
            return None

        message = self._new_message(text, Sender.AGENT)
        self.sync.accept(message)
        await self._persist(message)
        return message

    async def wait_for_replies(self) -> None:
        """Wait until every scheduled reply has been emitted."""
        while self._reply_tasks:
            await asyncio.gather(*list(self._reply_tasks), return_exceptions=True)

    def _typing_delay_seconds(self) -> float:
        low = max(self.config.typing_delay_min_ms, 0)
        high = max(self.config.typing_delay_max_ms, low)
        return random.uniform(low, high) / 1000

    async def _select(self, content: str) -> Reply:
        await self.refresh_settings()
        rule_sets = await self.rules.load()
        return await select_response(
            content,
            rule_sets,
            self.settings,
            ai=self.ai,
            live_ack_message=self.config.live_ack_message,
        )

    async def _reply_to(self, user_message: ChatMessage) -> Optional[ChatMessage]:
        typing_cleared = False
        try:
            async with self._reply_lock:
                try:
                    reply = await self._select(user_message.content)
                except Exception as e:
                    self.log.error("Responder selection failed", context={"message_id": user_message.id, "error": str(e)})
                    return None

                await self._sleep(self._typing_delay_seconds())

                message = self._new_message(reply.text, reply.sender, reply.is_html)
                self.sync.accept(message)
                self.notifications.end_typing()
                typing_cleared = True

                self.log.info(
                    "Reply emitted",
                    context={"source": reply.source.value, "sender": reply.sender.value, "rule_id": reply.rule_id},
                )
                await self._persist(message)
                return message
        finally:
            if not typing_cleared:
                self.notifications.end_typing()
