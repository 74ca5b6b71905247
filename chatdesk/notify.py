# chatdesk/notify.py
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, sender_name: str, content: str, conversation_id: int,
               avatar: Optional[str] = None) -> None: ...


class LogNotifier:
    """Default notifier: the desktop shell shows the popup, we only log."""

    def notify(self, sender_name, content, conversation_id, avatar=None):
        logger.info("New message from %s in conversation %d: %s", sender_name, conversation_id, content)
