from __future__ import annotations

import uuid
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy import JSON, BigInteger, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(tz=ZoneInfo("UTC"))


class Meal(Base):
    __tablename__ = "meals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128))
    name_key: Mapped[str] = mapped_column(String(128), unique=True, index=True)  # normalized name
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)  # null => neutral
    tags: Mapped[list] = mapped_column(JSON, default=list)
    references: Mapped[list] = mapped_column(JSON, default=list)
    photo_file_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class ConversationSession(Base):
    __tablename__ = "sessions"

    scope_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, index=True, default=_uuid)
    kind: Mapped[str] = mapped_column(String(32))  # creating-meal / rating-poll / planning
    step: Mapped[str] = mapped_column(String(32), default="")
    draft_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class TrackedMessage(Base):
    __tablename__ = "tracked_messages"
    __table_args__ = (UniqueConstraint("session_id", "role", name="uq_tracked_session_role"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), index=True)
    role: Mapped[str] = mapped_column(String(16))  # prompt / keyboard / echo / vote
    chat_id: Mapped[int] = mapped_column(BigInteger)
    message_id: Mapped[int] = mapped_column(BigInteger)
    has_media: Mapped[int] = mapped_column(Integer, default=0)  # 0/1


class Poll(Base):
    __tablename__ = "polls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(String(36), index=True)
    scope_key: Mapped[str] = mapped_column(String(64), index=True)
    meal_name: Mapped[str] = mapped_column(String(128))
    chat_id: Mapped[int] = mapped_column(BigInteger)
    message_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    tg_poll_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    quorum: Mapped[int] = mapped_column(Integer, default=0)  # 0 => disabled
    status: Mapped[str] = mapped_column(String(16), default="open")  # open / closed


class PollVote(Base):
    __tablename__ = "poll_votes"

    poll_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    voter_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    value: Mapped[int] = mapped_column(Integer)


class Operator(Base):
    __tablename__ = "operators"

    telegram_user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
