from typing import Callable, Optional

from app.logging_config import get_logger
from app.schemas.chat import ChatMessage, Sender

logger = get_logger("notification_service")


class TypingNotificationController:
    """Transient UI signals for one widget: typing indicator, unread badge, online state.

    Typing is a pending-reply counter so overlapping replies share one
    indicator: it is shown on 0 -> 1 and hidden when the last reply lands.
    """

    def __init__(
        self,
        is_open: bool = False,
        operator_online: bool = False,
        on_change: Optional[Callable[[str, bool], None]] = None,
    ):
        self._pending_replies = 0
        self.is_open = is_open
        self.has_unread = False
        self.operator_online = operator_online
        self.operator_has_unread = False
        self.on_change = on_change

    def _emit(self, signal: str, value: bool) -> None:
        if self.on_change is not None:
            self.on_change(signal, value)

    @property
    def is_typing(self) -> bool:
        return self._pending_replies > 0

    @property
    def has_new_message(self) -> bool:
        return self.has_unread

    def begin_typing(self) -> bool:
        """Register a pending reply. Returns True only when the indicator was just shown."""
        self._pending_replies += 1
        if self._pending_replies == 1:
            self._emit("typing", True)
            return True
        return False

    def end_typing(self) -> bool:
        """Reply emitted or aborted. Returns True when the indicator was just hidden."""
        if self._pending_replies == 0:
            return False
        self._pending_replies -= 1
        if self._pending_replies == 0:
            self._emit("typing", False)
            return True
        return False

    def on_message(self, message: ChatMessage) -> None:
        if message.sender == Sender.USER:
            if not self.operator_online and not self.operator_has_unread:
                self.operator_has_unread = True
                self._emit("operator_unread", True)
            return

        if not self.is_open and not self.has_unread:
            self.has_unread = True
            self._emit("unread", True)

    def open(self) -> None:
        self.is_open = True
        self.acknowledge()

    def close(self) -> None:
        self.is_open = False

    def acknowledge(self) -> None:
        if self.has_unread:
            self.has_unread = False
            self._emit("unread", False)

    def set_operator_online(self, online: bool) -> None:
        self.operator_online = online
        if online and self.operator_has_unread:
            self.operator_has_unread = False
            self._emit("operator_unread", False)
