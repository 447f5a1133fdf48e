from datetime import timedelta

from sqlalchemy.future import select

from app.cleanup import delete_expired_matches, run_cleanup
from app.database import SessionLocal
from app.models import User, Match, MatchParticipant, ChatMessage, utcnow


async def seed_matches():
    async with SessionLocal() as session:
        owner = User(name="Owner", email="owner@example.com", password_hash="x")
        session.add(owner)
        await session.flush()

        past = Match(sport="Football", date_time=utcnow() - timedelta(hours=2), location="Park",
                     max_players=4, created_by=owner.id, team_a=[], team_b=[])
        future = Match(sport="Football", date_time=utcnow() + timedelta(hours=2), location="Park",
                       max_players=4, created_by=owner.id, team_a=[], team_b=[])
        for match in (past, future):
            match.participants.append(MatchParticipant(user_id=owner.id, name="Owner", skill="3", age=30, phone="1"))
        session.add_all([past, future])
        await session.flush()

        session.add(ChatMessage(match_id=past.id, sender_id=owner.id, message="old news"))
        session.add(ChatMessage(match_id=future.id, sender_id=owner.id, message="see you"))
        await session.commit()
        return past.id, future.id


async def test_expired_matches_are_removed_with_their_chat(db_reset):
    past_id, future_id = await seed_matches()

    async with SessionLocal() as session:
        assert await delete_expired_matches(session) == 1

    async with SessionLocal() as session:
        match_ids = (await session.execute(select(Match.id))).scalars().all()
        chat_matches = (await session.execute(select(ChatMessage.match_id))).scalars().all()
        roster = (await session.execute(select(MatchParticipant.match_id))).scalars().all()

    assert match_ids == [future_id]
    assert chat_matches == [future_id]
    assert roster == [future_id]


async def test_nothing_to_clean(db_reset):
    async with SessionLocal() as session:
        assert await delete_expired_matches(session) == 0


async def test_run_cleanup_is_idempotent(db_reset):
    await seed_matches()
    await run_cleanup(SessionLocal)
    await run_cleanup(SessionLocal)

    async with SessionLocal() as session:
        assert len((await session.execute(select(Match.id))).scalars().all()) == 1
