# botqueue/models/jobs.py
from __future__ import annotations

import enum
import json
import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import String, Integer, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from botqueue.db import Base, utcnow


class JobStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    RETRY = "RETRY"


class JobType(str, enum.Enum):
    GENERATE_POST = "GENERATE_POST"
    BOT_CYCLE = "BOT_CYCLE"
    CREW_COMMENT = "CREW_COMMENT"
    RECALC_ENGAGEMENT = "RECALC_ENGAGEMENT"
    RESPOND_TO_COMMENT = "RESPOND_TO_COMMENT"
    RESPOND_TO_POST = "RESPOND_TO_POST"
    WELCOME_SEQUENCE = "WELCOME_SEQUENCE"
    PREGENERATE_BUFFER = "PREGENERATE_BUFFER"


RUNNABLE_STATUSES = (JobStatus.QUEUED.value, JobStatus.RETRY.value)
PENDING_STATUSES = (JobStatus.QUEUED.value, JobStatus.RETRY.value, JobStatus.RUNNING.value)
TERMINAL_STATUSES = (JobStatus.SUCCEEDED.value, JobStatus.FAILED.value)


def _new_id() -> str:
    return uuid.uuid4().hex


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    type: Mapped[str] = mapped_column(String(64), index=True)           # JobType value
    bot_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payload: Mapped[str] = mapped_column(Text, default="{}")            # json object
    status: Mapped[str] = mapped_column(String(16), default=JobStatus.QUEUED.value, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        # claim query: runnable jobs ordered by run-at
        Index("ix_jobs_status_scheduled", "status", "scheduled_at"),
        # duplicate-prevention lookups
        Index("ix_jobs_bot_type_status", "bot_id", "type", "status"),
    )

    def payload_dict(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.payload or "{}")
        except (TypeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "botId": self.bot_id,
            "status": self.status,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "lastError": self.last_error,
            "scheduledAt": _iso(self.scheduled_at),
            "lockedAt": _iso(self.locked_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.type} bot={self.bot_id} {self.status} attempts={self.attempts}>"


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat(timespec="seconds") + "Z"
