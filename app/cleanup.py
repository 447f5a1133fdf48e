import asyncio
import logging
import os

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from app.models import Match, MatchParticipant, ChatMessage, utcnow

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = int(os.getenv("CLEANUP_INTERVAL_SECONDS", 60 * 60))


async def delete_expired_matches(session) -> int:
    """Remove matches whose start time has passed, along with their roster and chat."""
    result = await session.execute(select(Match.id).where(Match.date_time < utcnow()))
    expired_ids = list(result.scalars().all())
    if not expired_ids:
        return 0

    await session.execute(delete(ChatMessage).where(ChatMessage.match_id.in_(expired_ids)))
    await session.execute(delete(MatchParticipant).where(MatchParticipant.match_id.in_(expired_ids)))
    await session.execute(delete(Match).where(Match.id.in_(expired_ids)))
    await session.commit()
    return len(expired_ids)


async def run_cleanup(session_factory):
    try:
        async with session_factory() as session:
            deleted = await delete_expired_matches(session)
        if deleted:
            logger.info("Removed %d expired matches", deleted)
    except SQLAlchemyError as e:
        logger.error("Failed to remove expired matches: %s", e)


async def cleanup_loop(session_factory, interval: int = CLEANUP_INTERVAL_SECONDS):
    while True:
        await run_cleanup(session_factory)
        await asyncio.sleep(interval)
