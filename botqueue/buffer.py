# botqueue/buffer.py
# Pre-generated content per bot. Filled off-peak, consumed by GENERATE_POST
# so posting at a due time doesn't wait on a generation provider.
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update

from botqueue.config import settings
from botqueue.db import get_sessionmaker, utcnow
from botqueue.models.bots import ContentBuffer

logger = logging.getLogger("uvicorn.error")


def _live(now: datetime):
    return (ContentBuffer.used_at.is_(None), ContentBuffer.expires_at > now)


async def store_buffered(
    bot_id: str,
    content: Dict[str, Any],
    *,
    ttl: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> str:
    now = now or utcnow()
    ttl = ttl if ttl is not None else timedelta(hours=settings.BUFFER_TTL_HOURS)
    row = ContentBuffer(
        bot_id=bot_id,
        content=json.dumps(content, ensure_ascii=False, default=str),
        created_at=now,
        expires_at=now + ttl,
    )
    async with get_sessionmaker()() as session:
        async with session.begin():
            session.add(row)
    return row.id


async def take_buffered(
    bot_id: str, *, now: Optional[datetime] = None
) -> Optional[Tuple[str, Dict[str, Any]]]:
    """
    Reserve the oldest live entry for a bot; returns (entry_id, content).
    The used_at compare-and-set makes sure two concurrent posts never
    publish the same content. Hand the id to release_buffered() if the
    publish does not go through.
    """
    now = now or utcnow()
    async with get_sessionmaker()() as session:
        async with session.begin():
            candidates = (
                await session.execute(
                    select(ContentBuffer.id, ContentBuffer.content)
                    .where(ContentBuffer.bot_id == bot_id, *_live(now))
                    .order_by(ContentBuffer.created_at.asc(), ContentBuffer.id.asc())
                    .limit(3)
                )
            ).all()
            for entry_id, raw in candidates:
                result = await session.execute(
                    update(ContentBuffer)
                    .where(ContentBuffer.id == entry_id, ContentBuffer.used_at.is_(None))
                    .values(used_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    try:
                        return entry_id, json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("[BUFFER] dropping unreadable entry %s for bot=%s", entry_id, bot_id)
    return None


async def release_buffered(entry_id: str) -> bool:
    """Put a reserved entry back so the next post can use it."""
    async with get_sessionmaker()() as session:
        async with session.begin():
            result = await session.execute(
                update(ContentBuffer)
                .where(ContentBuffer.id == entry_id, ContentBuffer.used_at.is_not(None))
                .values(used_at=None)
                .execution_options(synchronize_session=False)
            )
    return result.rowcount == 1


async def count_live(bot_id: str, *, now: Optional[datetime] = None) -> int:
    counts = await live_buffer_counts([bot_id], now or utcnow())
    return counts.get(bot_id, 0)


async def live_buffer_counts(bot_ids: Iterable[str], now: datetime) -> Dict[str, int]:
    ids = list(bot_ids)
    if not ids:
        return {}
    async with get_sessionmaker()() as session:
        rows = await session.execute(
            select(ContentBuffer.bot_id, func.count(ContentBuffer.id))
            .where(ContentBuffer.bot_id.in_(ids), *_live(now))
            .group_by(ContentBuffer.bot_id)
        )
        return {bot_id: n for bot_id, n in rows.all()}


async def prune_expired(*, now: Optional[datetime] = None) -> int:
    """Delete expired and consumed entries."""
    now = now or utcnow()
    async with get_sessionmaker()() as session:
        async with session.begin():
            result = await session.execute(
                delete(ContentBuffer).where(
                    or_(ContentBuffer.expires_at <= now, ContentBuffer.used_at.is_not(None))
                )
            )
    if result.rowcount:
        logger.info("[BUFFER] pruned %d buffer entries", result.rowcount)
    return result.rowcount or 0
