# chatdesk/db/models.py
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Text, ForeignKey, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

OPERATOR_ID = 0

USER_TYPES = ("user", "bot")
SENDER_TYPES = ("me", "other")
MESSAGE_FORMATS = ("text", "markdown")


def utc_now_iso() -> str:
    # stored as text so rows written by older builds (ISO strings) still load
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    avatar = Column(Text)
    type = Column(Text, nullable=False, default="user")    # "user" | "bot"
    created_at = Column(String, default=utc_now_iso)

    conversations = relationship("Conversation", back_populates="user")

    __table_args__ = {"sqlite_autoincrement": True}


class Conversation(Base):
    __tablename__ = "conversations"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    last_message = Column(Text)
    last_time = Column(Text)                                # "HH:MM", display only
    last_timestamp = Column(Integer, default=0)             # epoch ms, ordering key
    unread = Column(Integer, default=0)
    muted = Column(Integer, default=0)                      # 0 | 1
    created_at = Column(String, default=utc_now_iso)

    user = relationship("User", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.id")

    __table_args__ = (Index("ix_conversations_user_id", "user_id"), {"sqlite_autoincrement": True})


class Message(Base):
    __tablename__ = "messages"
    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    sender_type = Column(Text, nullable=False)              # "me" | "other"
    content = Column(Text, nullable=False)
    format = Column(Text, default="text")                   # "text" | "markdown"
    created_at = Column(String, default=utc_now_iso)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (Index("ix_messages_conversation_id", "conversation_id"), {"sqlite_autoincrement": True})


class SchemaVersion(Base):
    __tablename__ = "schema_version"
    version = Column(Integer, primary_key=True, autoincrement=False)
    description = Column(Text)
    applied_at = Column(String, default=utc_now_iso)
