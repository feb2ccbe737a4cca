"""Post-commit notifications and SMS.

Services record what should be announced on a ``SideEffects`` instance while
they work. The API layer runs the queue after the response has been sent
(FastAPI ``BackgroundTasks``). Running the queue never raises: a failing
action is logged and the next one still runs, so nothing queued here can
affect the outcome of the request that queued it.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from shared.core import get_logger

logger = get_logger(__name__)


@dataclass
class Notice:
    type: str
    title: str
    message: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    def notify(self, user_id: int, notice: Notice) -> None: ...


class SmsSink(Protocol):
    def send_sms(self, phone: str, text: str) -> None: ...


class SideEffects:
    def __init__(self, notifications: NotificationSink, sms: SmsSink):
        self.notifications = notifications
        self.sms = sms
        self._pending: list[tuple[str, Callable[[], Any]]] = []

    def notify(self, user_id: Optional[int], notice: Notice) -> None:
        if user_id is None:
            return
        self._pending.append((f"notify:{notice.type}", lambda: self.notifications.notify(user_id, notice)))

    def send_sms(self, phone: Optional[str], text: str) -> None:
        if not phone:
            return
        self._pending.append(("sms", lambda: self.sms.send_sms(phone, text)))

    @property
    def pending(self) -> int:
        return len(self._pending)

    def run(self) -> None:
        pending, self._pending = self._pending, []
        for name, action in pending:
            try:
                action()
            except Exception:
                logger.warning(f"Side effect {name} failed", exc_info=True)
