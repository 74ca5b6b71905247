# chatdesk/poller.py
"""
Headless polling client for the local chat API.

Two repeating timers keep a local view fresh: one reloads the conversation
list, the other reloads the messages of the selected conversation and only
runs while something is selected.

Every request takes a sequence number when it is issued. `ConversationCache`
applies a response only if it is newer than what it already holds for that
key, so a slow response that lands after a faster, later one is dropped
instead of rolling the view back.
"""
import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import requests

from chatdesk.db.models import OPERATOR_ID

logger = logging.getLogger(__name__)

CONVERSATIONS_ENDPOINT = "/api/conversations"
MESSAGES_ENDPOINT = "/api/messages"
SEND_ENDPOINT = "/api/send-message"
CLEAR_UNREAD_ENDPOINT = "/api/clear-unread"
TOGGLE_MUTE_ENDPOINT = "/api/toggle-mute"
TOTAL_UNREAD_ENDPOINT = "/api/total-unread"


class ApiError(Exception):
    """The server answered with a non-zero envelope code."""


class ConversationCache:
    def __init__(self):
        self._lock = threading.Lock()
        self._list_seq = 0
        self._msg_seq: Dict[int, int] = {}
        self.order: List[int] = []
        self.conversations: Dict[int, dict] = {}
        self.messages: Dict[int, List[dict]] = {}

    def apply_conversations(self, seq: int, rows: List[dict]) -> bool:
        with self._lock:
            if seq <= self._list_seq:
                return False
            self._list_seq = seq
            self.conversations = {r["id"]: r for r in rows}
            self.order = [r["id"] for r in rows]
            for cid in list(self.messages):
                if cid not in self.conversations:
                    self.messages.pop(cid, None)
                    self._msg_seq.pop(cid, None)
            return True

    def apply_messages(self, seq: int, conversation_id: int, rows: List[dict]) -> bool:
        with self._lock:
            if seq <= self._msg_seq.get(conversation_id, 0):
                return False
            self._msg_seq[conversation_id] = seq
            self.messages[conversation_id] = rows
            return True

    def list(self) -> List[dict]:
        with self._lock:
            return [self.conversations[cid] for cid in self.order]

    def get(self, conversation_id: int) -> Optional[dict]:
        with self._lock:
            return self.conversations.get(conversation_id)

    def messages_for(self, conversation_id: int) -> List[dict]:
        with self._lock:
            return list(self.messages.get(conversation_id, []))


class _RepeatingTimer:
    def __init__(self, interval: float, fn: Callable[[], Any], name: str):
        self.interval = interval
        self.fn = fn
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.fn()

    def cancel(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1)


class ChatPoller:
    def __init__(self, base_url: str = "", session=None,
                 list_interval: float = 3.0, message_interval: float = 2.0,
                 timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.list_interval = list_interval
        self.message_interval = message_interval
        self.timeout = timeout
        self.cache = ConversationCache()
        self.current_id: Optional[int] = None
        self._seq = itertools.count(1)
        self._seq_lock = threading.Lock()
        self._list_timer: Optional[_RepeatingTimer] = None
        self._msg_timer: Optional[_RepeatingTimer] = None
        self._timer_lock = threading.Lock()
        self._running = False

    # -------- transport --------
    def _next_seq(self) -> int:
        with self._seq_lock:
            return next(self._seq)

    def _post(self, endpoint: str, body: Optional[dict] = None) -> Any:
        kwargs = {"json": body or {}}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        r = self.session.post(self.base_url + endpoint, **kwargs)
        data = r.json()
        if not isinstance(data, dict):
            raise ApiError(f"unexpected reply from {endpoint} (HTTP {r.status_code})")
        if data.get("code") != 0:
            raise ApiError(data.get("message") or f"HTTP {r.status_code}")
        return data.get("data")

    def _safe(self, what: str, fn: Callable[[], Any]) -> Any:
        # failures keep whatever is already displayed
        try:
            return fn()
        except (requests.RequestException, ApiError, ValueError) as e:
            logger.warning("%s failed: %s", what, e)
            return None

    # -------- reads --------
    @property
    def current(self) -> Optional[dict]:
        return self.cache.get(self.current_id) if self.current_id is not None else None

    def conversations(self) -> List[dict]:
        return self.cache.list()

    def messages(self) -> List[dict]:
        return self.cache.messages_for(self.current_id) if self.current_id is not None else []

    def refresh_conversations(self) -> bool:
        seq = self._next_seq()
        rows = self._safe("Loading conversations", lambda: self._post(CONVERSATIONS_ENDPOINT))
        if rows is None:
            return False
        applied = self.cache.apply_conversations(seq, rows)
        if not applied:
            return False
        if self.current_id is not None and self.cache.get(self.current_id) is None:
            # selected conversation was deleted elsewhere
            self.current_id = None
            self._restart_message_timer()
        if self.current_id is None and rows:
            self.select(rows[0]["id"])
        return True

    def refresh_messages(self, conversation_id: Optional[int] = None) -> bool:
        cid = conversation_id if conversation_id is not None else self.current_id
        if cid is None:
            return False
        seq = self._next_seq()
        rows = self._safe(
            f"Loading messages for {cid}",
            lambda: self._post(MESSAGES_ENDPOINT, {"conversationId": cid}),
        )
        if rows is None:
            return False
        return self.cache.apply_messages(seq, cid, rows)

    # -------- actions --------
    def select(self, conversation_id: int) -> None:
        changed = conversation_id != self.current_id
        self.current_id = conversation_id
        self.refresh_messages(conversation_id)
        cleared = self._safe(
            f"Clearing unread for {conversation_id}",
            lambda: self._post(CLEAR_UNREAD_ENDPOINT, {"conversationId": conversation_id}) or True,
        )
        if cleared:
            self.refresh_conversations()
        if changed:
            self._restart_message_timer()

    def send(self, content: str, format: str = "text") -> Optional[int]:
        if not content.strip() or self.current_id is None:
            return None
        cid = self.current_id
        data = self._safe("Sending message", lambda: self._post(SEND_ENDPOINT, {
            "conversationId": cid,
            "senderId": OPERATOR_ID,
            "senderType": "me",
            "content": content,
            "format": format,
        }))
        if data is None:
            return None
        self.refresh_messages(cid)
        self.refresh_conversations()
        return data["id"]

    def toggle_mute(self, conversation_id: int) -> Optional[bool]:
        data = self._safe("Toggling mute", lambda: self._post(TOGGLE_MUTE_ENDPOINT, {"conversationId": conversation_id}))
        if data is None:
            return None
        self.refresh_conversations()
        return data["muted"]

    def total_unread(self) -> Optional[int]:
        data = self._safe("Loading unread total", lambda: self._post(TOTAL_UNREAD_ENDPOINT))
        return None if data is None else data["total"]

    # -------- timers --------
    def _restart_message_timer(self) -> None:
        # only while running; stop() clears the flag before joining the list timer
        with self._timer_lock:
            if not self._running:
                return
            if self._msg_timer is not None:
                self._msg_timer.cancel()
                self._msg_timer = None
            if self.current_id is not None:
                self._msg_timer = _RepeatingTimer(self.message_interval, self.refresh_messages, "chatdesk-messages")
                self._msg_timer.start()

    def start(self) -> None:
        if self._running:
            return
        self.refresh_conversations()
        with self._timer_lock:
            self._running = True
            self._list_timer = _RepeatingTimer(self.list_interval, self.refresh_conversations, "chatdesk-conversations")
            self._list_timer.start()
        self._restart_message_timer()

    def stop(self) -> None:
        with self._timer_lock:
            self._running = False
            list_timer, self._list_timer = self._list_timer, None
        if list_timer is not None:
            list_timer.cancel()
        with self._timer_lock:
            msg_timer, self._msg_timer = self._msg_timer, None
        if msg_timer is not None:
            msg_timer.cancel()
