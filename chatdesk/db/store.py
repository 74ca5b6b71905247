# chatdesk/db/store.py
"""
Local chat store: users, their one-to-one conversations, and messages.

`ChatStore` owns the engine and session factory. Build one per database, call
`open()` before use and `close()` when done. Every write that touches more than
one row runs in a single transaction.
"""
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from chatdesk.db import migrations
from chatdesk.db.models import (
    OPERATOR_ID, Conversation, Message, User,
)
from chatdesk.db.session import build_engine, build_sessionmaker

logger = logging.getLogger(__name__)

AVATAR_URL = "https://api.dicebear.com/7.x/avataaars/svg?seed={seed}"

SEED_BOTS = ["Alice", "Bob", "Carol"]


class StoreError(Exception):
    pass


class ConversationNotFound(StoreError, LookupError):
    pass


class UserNotFound(StoreError, LookupError):
    pass


class OperatorProtected(StoreError, ValueError):
    pass


@dataclass(frozen=True)
class Delivery:
    message_id: int
    conversation_id: int
    muted: bool


def _now_ms() -> int:
    return int(time.time() * 1000)


def _display_time() -> str:
    return datetime.now().strftime("%H:%M")


class ChatStore:
    def __init__(self, db_url: str):
        self.db_url = db_url
        self.engine = None
        self._session_factory = None

    # -------- lifecycle --------
    def open(self) -> "ChatStore":
        if self.engine is not None:
            return self
        self.engine = build_engine(self.db_url)
        self._session_factory = build_sessionmaker(self.engine)
        try:
            migrations.migrate(self.engine)
        except Exception:
            self.close()
            raise
        logger.info("Chat store open: %s", self.engine.url.render_as_string(hide_password=True))
        return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self._session_factory = None

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    def schema_version(self) -> int:
        return migrations.current_version(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        if self._session_factory is None:
            raise StoreError("store is not open")
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        with self.session() as db:
            with db.begin():
                yield db

    # -------- seed --------
    def seed_defaults(self) -> bool:
        """Insert the operator and a few greeting bots into an empty database."""
        with self.transaction() as db:
            if db.scalar(select(func.count()).select_from(User)):
                return False
            db.add(User(id=OPERATOR_ID, name="Me", avatar=AVATAR_URL.format(seed="me"), type="user"))
            for i, name in enumerate(SEED_BOTS, start=1):
                bot = User(name=name, avatar=AVATAR_URL.format(seed=i), type="bot")
                db.add(bot)
                db.flush()
                conv = Conversation(
                    user_id=bot.id, last_message="Hello", last_time=_display_time(),
                    last_timestamp=_now_ms(), unread=0, muted=0,
                )
                db.add(conv)
                db.flush()
                db.add(Message(conversation_id=conv.id, sender_id=bot.id, sender_type="other", content="Hello"))
                db.add(Message(conversation_id=conv.id, sender_id=OPERATOR_ID, sender_type="me", content="Hi there"))
        logger.info("Seeded operator and %d bots", len(SEED_BOTS))
        return True

    # -------- conversations --------
    def list_conversations(self) -> List[dict]:
        stmt = (
            select(
                Conversation.id, Conversation.user_id,
                User.name, User.avatar, User.type,
                Conversation.last_message, Conversation.last_time, Conversation.last_timestamp,
                Conversation.unread, Conversation.muted,
            )
            .join(User, Conversation.user_id == User.id)
            .order_by(Conversation.last_timestamp.desc(), Conversation.id.desc())
        )
        with self.session() as db:
            return [dict(r._mapping) for r in db.execute(stmt)]

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        with self.session() as db:
            return db.get(Conversation, conversation_id)

    def get_conversation_by_user_id(self, user_id: int) -> Optional[Conversation]:
        with self.session() as db:
            return db.scalars(
                select(Conversation).where(Conversation.user_id == user_id).order_by(Conversation.id)
            ).first()

    def increment_unread(self, conversation_id: int) -> None:
        with self.transaction() as db:
            db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(unread=Conversation.unread + 1)
            )

    def clear_unread(self, conversation_id: int) -> None:
        with self.transaction() as db:
            db.execute(update(Conversation).where(Conversation.id == conversation_id).values(unread=0))

    def get_total_unread(self) -> int:
        """Unread across conversations that are not muted."""
        with self.session() as db:
            total = db.scalar(select(func.sum(Conversation.unread)).where(Conversation.muted == 0))
        return int(total or 0)

    def toggle_muted(self, conversation_id: int) -> bool:
        with self.transaction() as db:
            conv = db.get(Conversation, conversation_id)
            if conv is None:
                raise ConversationNotFound(f"conversation {conversation_id} not found")
            conv.muted = 0 if conv.muted else 1
            return bool(conv.muted)

    def is_conversation_muted(self, conversation_id: int) -> bool:
        with self.session() as db:
            muted = db.scalar(select(Conversation.muted).where(Conversation.id == conversation_id))
        return bool(muted)

    # -------- messages --------
    def list_messages(self, conversation_id: int) -> List[dict]:
        stmt = (
            select(
                Message.id, Message.conversation_id, Message.sender_id, Message.sender_type,
                Message.content, Message.format, Message.created_at,
                User.name.label("sender_name"),
            )
            .outerjoin(User, Message.sender_id == User.id)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.id.asc())
        )
        with self.session() as db:
            return [dict(r._mapping) for r in db.execute(stmt)]

    def _append(self, db: Session, conv: Conversation, sender_id: int, sender_type: str,
                content: str, format: str) -> Message:
        msg = Message(
            conversation_id=conv.id, sender_id=sender_id, sender_type=sender_type,
            content=content, format=format or "text",
        )
        db.add(msg)
        conv.last_message = content
        conv.last_time = _display_time()
        conv.last_timestamp = _now_ms()
        db.flush()
        return msg

    def send_message(self, conversation_id: int, sender_id: int, sender_type: str,
                     content: str, format: str = "text", count_unread: bool = False) -> int:
        """
        Append a message and refresh the conversation's last-message fields.

        Unread is left alone unless `count_unread` is set, in which case the
        increment commits together with the message.
        """
        with self.transaction() as db:
            conv = db.get(Conversation, conversation_id)
            if conv is None:
                raise ConversationNotFound(f"conversation {conversation_id} not found")
            msg = self._append(db, conv, sender_id, sender_type, content, format)
            if count_unread:
                conv.unread = (conv.unread or 0) + 1
            return msg.id

    def deliver_bot_message(self, user_id: int, content: str, format: str = "text") -> Delivery:
        """Store a message from `user_id` into its conversation and count it as unread."""
        with self.transaction() as db:
            conv = db.scalars(
                select(Conversation).where(Conversation.user_id == user_id).order_by(Conversation.id)
            ).first()
            if conv is None:
                raise ConversationNotFound(f"conversation not found for user {user_id}")
            msg = self._append(db, conv, user_id, "other", content, format)
            conv.unread = (conv.unread or 0) + 1
            return Delivery(message_id=msg.id, conversation_id=conv.id, muted=bool(conv.muted))

    # -------- users --------
    def get_users(self) -> List[User]:
        with self.session() as db:
            return list(db.scalars(select(User).order_by(User.id.desc())))

    def get_user(self, user_id: int) -> Optional[User]:
        with self.session() as db:
            return db.get(User, user_id)

    def add_user(self, name: str, avatar: Optional[str], type: str = "bot") -> int:
        with self.transaction() as db:
            user = User(name=name, avatar=avatar, type=type)
            db.add(user)
            db.flush()
            db.add(Conversation(
                user_id=user.id, last_message="", last_time=_display_time(),
                last_timestamp=_now_ms(), unread=0, muted=0,
            ))
            return user.id

    def update_user(self, user_id: int, name: str, avatar: Optional[str]) -> None:
        with self.transaction() as db:
            user = db.get(User, user_id)
            if user is None:
                raise UserNotFound(f"user {user_id} not found")
            user.name = name
            user.avatar = avatar

    def delete_user(self, user_id: int) -> bool:
        if user_id == OPERATOR_ID:
            raise OperatorProtected("the operator user cannot be deleted")
        # messages -> conversations -> user
        with self.transaction() as db:
            opts = {"synchronize_session": False}
            conv_ids = select(Conversation.id).where(Conversation.user_id == user_id)
            db.execute(delete(Message).where(Message.conversation_id.in_(conv_ids)), execution_options=opts)
            db.execute(delete(Conversation).where(Conversation.user_id == user_id), execution_options=opts)
            result = db.execute(delete(User).where(User.id == user_id), execution_options=opts)
            return result.rowcount > 0
