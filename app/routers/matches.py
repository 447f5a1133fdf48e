from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from datetime import datetime, timezone
from typing import Optional
import logging
import math

from app.models import User, Match, MatchParticipant, Community, CommunityMember, ChatMessage, utcnow
from app.schemas import MatchCreate, MatchUpdate, MatchJoin, ManualTeams
from app.database import get_db, commit_or_500
from app.auth import get_current_user_id
from app.presence import ConnectionRegistry
from app.realtime import Coordinator, get_coordinator
from app.teams import form_teams, validate_manual_teams, TeamAssignmentError

router = APIRouter()
logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def serialize_user(user: User, registry: ConnectionRegistry):
    return {
        "id": user.id,
        "name": user.name,
        "location": user.location,
        "skill_level": user.skill_level,
        "profile_image": user.profile_image,
        "is_online": registry.is_online(user.id),
    }


def serialize_match(match: Match, registry: ConnectionRegistry):
    users = {p.user_id: p.user for p in match.participants}
    return {
        "id": match.id,
        "sport": match.sport,
        "date_time": match.date_time.isoformat(),
        "location": match.location,
        "max_players": match.max_players,
        "current_players": match.current_players,
        "skill_requirement": match.skill_requirement,
        "description": match.description,
        "community_code": match.community_code,
        "created_by": serialize_user(match.creator, registry),
        "participants": [serialize_user(p.user, registry) for p in match.participants],
        "teams": {
            "team_a": [serialize_user(users[uid], registry) for uid in match.team_a if uid in users],
            "team_b": [serialize_user(users[uid], registry) for uid in match.team_b if uid in users],
            "is_manual": match.teams_manual,
        },
        "created_at": match.created_at.isoformat() if match.created_at else None,
    }


def serialize_message(chat: ChatMessage):
    return {
        "id": chat.id,
        "match_id": chat.match_id,
        "community_id": chat.community_id,
        "sender": {
            "id": chat.sender.id,
            "name": chat.sender.name,
            "skill_level": chat.sender.skill_level,
            "profile_image": chat.sender.profile_image,
        },
        "message": chat.message,
        "timestamp": chat.timestamp.isoformat(),
    }


def match_query():
    return select(Match).options(
        selectinload(Match.creator),
        selectinload(Match.participants).selectinload(MatchParticipant.user),
    ).execution_options(populate_existing=True)


async def load_match(db: AsyncSession, match_id: int) -> Match:
    result = await db.execute(match_query().where(Match.id == match_id))
    match = result.scalars().first()
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    return match


def require_creator(match: Match, user_id: int, action: str):
    if match.created_by != user_id:
        raise HTTPException(status_code=403, detail=f"Only the match creator can {action}")


@router.post("/", status_code=201)
async def create_match(
    payload: MatchCreate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    coordinator: Coordinator = Depends(get_coordinator),
):
    creator = await db.get(User, user_id)
    if not creator:
        raise HTTPException(status_code=404, detail="Creator account not found")

    match = Match(
        sport=payload.sport,
        date_time=as_utc(payload.date_time),
        location=payload.location,
        max_players=payload.max_players,
        skill_requirement=payload.skill_requirement,
        description=payload.description or "",
        community_code=payload.community_code or "",
        created_by=creator.id,
        team_a=[],
        team_b=[],
        teams_manual=False,
    )
    # ✅ The creator takes the first roster slot with profile defaults
    match.participants.append(MatchParticipant(
        user=creator,
        name=creator.name,
        skill=str(creator.skill_level or 1),
        age=18,
        phone="Not provided",
    ))
    db.add(match)
    await commit_or_500(db, logger, "match")

    logger.info("User %s created match %s", user_id, match.id)
    match = await load_match(db, match.id)
    return {"match": serialize_match(match, coordinator.registry)}


@router.get("/")
async def list_matches(
    sport: Optional[str] = None,
    location: Optional[str] = None,
    skill: Optional[str] = None,
    upcoming: str = "true",
    db: AsyncSession = Depends(get_db),
    coordinator: Coordinator = Depends(get_coordinator),
):
    stmt = match_query()

    if sport and sport.strip():
        stmt = stmt.where(func.lower(Match.sport) == sport.strip().lower())

    if location and location.strip():
        stmt = stmt.where(Match.location.ilike(f"%{escape_like(location.strip())}%", escape="\\"))

    if skill is not None and skill.strip():
        try:
            max_skill = float(skill)
        except ValueError:
            max_skill = None
        if max_skill is not None and math.isfinite(max_skill):
            stmt = stmt.where(Match.skill_requirement <= max_skill)
        else:
            logger.warning("Ignoring non-numeric skill filter %r", skill)

    if upcoming.lower() != "false":
        stmt = stmt.where(Match.date_time >= utcnow())

    result = await db.execute(stmt.order_by(Match.date_time))
    matches = result.scalars().all()
    return {"matches": [serialize_match(m, coordinator.registry) for m in matches]}


@router.get("/{match_id}")
async def get_match(
    match_id: int,
    db: AsyncSession = Depends(get_db),
    coordinator: Coordinator = Depends(get_coordinator),
):
    match = await load_match(db, match_id)
    return {"match": serialize_match(match, coordinator.registry)}


@router.get("/{match_id}/players")
async def get_match_players(
    match_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    match = await load_match(db, match_id)
    require_creator(match, user_id, "view joined players")

    return {
        "players": [
            {
                "user_id": p.user_id,
                "name": p.name,
                "skill": p.skill,
                "age": p.age,
                "phone": p.phone,
                "joined_at": p.joined_at.isoformat() if p.joined_at else None,
            }
            for p in match.participants
        ]
    }


@router.get("/{match_id}/messages")
async def get_match_messages(
    match_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    match = await load_match(db, match_id)
    if all(p.user_id != user_id for p in match.participants):
        raise HTTPException(status_code=403, detail="Join this match to view chat")

    result = await db.execute(
        select(ChatMessage)
        .options(selectinload(ChatMessage.sender))
        .where(ChatMessage.match_id == match_id)
        .order_by(ChatMessage.timestamp, ChatMessage.id)
    )
    return {"messages": [serialize_message(c) for c in result.scalars().all()]}


@router.post("/{match_id}/join")
async def join_match(
    match_id: int,
    payload: MatchJoin,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    coordinator: Coordinator = Depends(get_coordinator),
):
    match = await load_match(db, match_id)

    if any(p.user_id == user_id for p in match.participants):
        return {"match": serialize_match(match, coordinator.registry), "message": "You are already in this match"}

    if match.is_full:
        raise HTTPException(status_code=400, detail="Match is already full")

    if match.community_code:
        if not payload.invite_code:
            raise HTTPException(status_code=400, detail="invite_code is required for this match")
        if payload.invite_code != match.community_code:
            raise HTTPException(status_code=400, detail="Invalid community code for this match")

    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User account not found")

    match.participants.append(MatchParticipant(
        user=user,
        name=payload.name,
        skill=payload.skill,
        age=payload.age,
        phone=payload.phone,
    ))

    # ✅ Roster just filled up: balance the teams automatically
    if match.is_full:
        assignment = form_teams([p.user for p in match.participants])
        match.team_a = assignment.team_a
        match.team_b = assignment.team_b
        match.teams_manual = False
        logger.info("Match %s is full, formed teams %s vs %s", match.id, assignment.team_a, assignment.team_b)

    joined_community = False
    if payload.invite_code:
        result = await db.execute(
            select(Community).options(selectinload(Community.members)).where(Community.invite_code == payload.invite_code)
        )
        community = result.scalars().first()
        if community and all(m.user_id != user_id for m in community.members):
            community.members.append(CommunityMember(user_id=user_id))
            joined_community = True

    await commit_or_500(db, logger, "match join")

    match = await load_match(db, match_id)
    return {
        "match": serialize_match(match, coordinator.registry),
        "message": "Joined match and community successfully" if joined_community else "Joined match successfully",
    }


@router.put("/{match_id}/teams/manual")
async def assign_teams_manually(
    match_id: int,
    payload: ManualTeams,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    coordinator: Coordinator = Depends(get_coordinator),
):
    match = await load_match(db, match_id)
    require_creator(match, user_id, "assign teams")

    if not match.is_full:
        raise HTTPException(status_code=400, detail="Manual team assignment is available only for full matches")

    try:
        assignment = validate_manual_teams([p.user_id for p in match.participants], payload.team_a, payload.team_b)
    except TeamAssignmentError as e:
        raise HTTPException(status_code=400, detail=str(e))

    match.team_a = assignment.team_a
    match.team_b = assignment.team_b
    match.teams_manual = True
    await commit_or_500(db, logger, "manual teams")

    match = await load_match(db, match_id)
    return {"match": serialize_match(match, coordinator.registry)}


@router.put("/{match_id}")
async def update_match(
    match_id: int,
    payload: MatchUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    coordinator: Coordinator = Depends(get_coordinator),
):
    match = await load_match(db, match_id)
    require_creator(match, user_id, "update this match")

    if payload.sport:
        match.sport = payload.sport
    if payload.location:
        match.location = payload.location
    if payload.description is not None:
        match.description = payload.description
    if payload.date_time is not None:
        match.date_time = as_utc(payload.date_time)
    if payload.max_players is not None:
        if payload.max_players < match.current_players:
            raise HTTPException(status_code=400, detail="max_players cannot be lower than current players")
        match.max_players = payload.max_players
    if payload.skill_requirement is not None:
        match.skill_requirement = payload.skill_requirement

    await commit_or_500(db, logger, "match update")

    match = await load_match(db, match_id)
    return {"match": serialize_match(match, coordinator.registry)}


@router.delete("/{match_id}")
async def delete_match(
    match_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    match = await load_match(db, match_id)
    require_creator(match, user_id, "delete this match")

    await db.execute(delete(ChatMessage).where(ChatMessage.match_id == match_id))
    await db.delete(match)
    await commit_or_500(db, logger, "match deletion")

    logger.info("User %s deleted match %s", user_id, match_id)
    return {"message": "Match deleted successfully"}
