# botqueue/models/bots.py
# Scheduling subset of the platform's bot entity, plus the content buffer.
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Text, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from botqueue.db import Base, utcnow

AGENT_MODE_SCHEDULED = "scheduled"
AGENT_MODE_AUTONOMOUS = "autonomous"


class Bot(Base):
    __tablename__ = "bots"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    handle: Mapped[str] = mapped_column(String(64), index=True)
    owner_tier: Mapped[str] = mapped_column(String(16), default="FREE")
    is_byob: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_scheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    agent_mode: Mapped[str | None] = mapped_column(String(16), nullable=True)  # None | scheduled | autonomous
    next_post_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_cycle_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    posts_per_day: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    agent_cooldown_min: Mapped[int] = mapped_column(Integer, default=60, nullable=False)

    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_posted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_decision_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_bots_due_post", "is_scheduled", "next_post_at"),
        Index("ix_bots_due_cycle", "agent_mode", "next_cycle_at"),
    )

    def __repr__(self) -> str:
        return f"<Bot @{self.handle} tier={self.owner_tier} mode={self.agent_mode}>"


class ContentBuffer(Base):
    __tablename__ = "content_buffer"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    bot_id: Mapped[str] = mapped_column(String(64), index=True)
    content: Mapped[str] = mapped_column(Text)                 # json from the content service
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
