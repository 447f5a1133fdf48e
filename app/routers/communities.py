from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from typing import Optional
import logging

from app.models import Community, CommunityMember, ChatMessage
from app.schemas import CommunityCreate, CommunityUpdate, JoinByCode
from app.database import get_db, commit_or_500
from app.auth import get_current_user_id
from app.realtime import Coordinator, get_coordinator
from app.routers.matches import escape_like, serialize_message, serialize_user

router = APIRouter()
logger = logging.getLogger(__name__)

MESSAGE_HISTORY_LIMIT = 300


def community_query():
    return select(Community).options(
        selectinload(Community.creator),
        selectinload(Community.members).selectinload(CommunityMember.user),
    ).execution_options(populate_existing=True)


async def load_community(db: AsyncSession, community_id: int) -> Community:
    result = await db.execute(community_query().where(Community.id == community_id))
    community = result.scalars().first()
    if not community:
        raise HTTPException(status_code=404, detail="Community not found")
    return community


async def ensure_code_available(db: AsyncSession, invite_code: str, community_id: Optional[int] = None):
    result = await db.execute(select(Community.id).where(Community.invite_code == invite_code))
    existing = result.scalars().first()
    if existing is not None and existing != community_id:
        raise HTTPException(status_code=409, detail="Invite code is already in use")


def serialize_community(community: Community, viewer_id: int, registry):
    members = [serialize_user(m.user, registry) for m in community.members]
    data = {
        "id": community.id,
        "name": community.name,
        "description": community.description,
        "created_by": serialize_user(community.creator, registry),
        "members": members,
        "member_count": len(members),
        "joined": any(m.user_id == viewer_id for m in community.members),
        "created_at": community.created_at.isoformat() if community.created_at else None,
    }
    # ✅ Only the creator gets to see and share the invite code
    if community.created_by == viewer_id:
        data["invite_code"] = community.invite_code
    return data


@router.post("/", status_code=201)
async def create_community(
    payload: CommunityCreate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    coordinator: Coordinator = Depends(get_coordinator),
):
    await ensure_code_available(db, payload.invite_code)

    community = Community(
        name=payload.name,
        description=payload.description or "",
        invite_code=payload.invite_code,
        created_by=user_id,
    )
    community.members.append(CommunityMember(user_id=user_id))
    db.add(community)
    await commit_or_500(db, logger, "community")

    logger.info("User %s created community %s", user_id, community.id)
    community = await load_community(db, community.id)
    return {"community": serialize_community(community, user_id, coordinator.registry)}


@router.get("/")
async def list_communities(
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    coordinator: Coordinator = Depends(get_coordinator),
):
    stmt = community_query()
    if search and search.strip():
        stmt = stmt.where(Community.name.ilike(f"%{escape_like(search.strip())}%", escape="\\"))

    result = await db.execute(stmt.order_by(Community.created_at.desc(), Community.id.desc()))
    return {
        "communities": [
            serialize_community(c, user_id, coordinator.registry) for c in result.scalars().all()
        ]
    }


@router.post("/join-by-code")
async def join_by_code(
    payload: JoinByCode,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    coordinator: Coordinator = Depends(get_coordinator),
):
    result = await db.execute(community_query().where(Community.invite_code == payload.invite_code))
    community = result.scalars().first()
    if not community:
        raise HTTPException(status_code=404, detail="Community not found for this invite code")

    already_joined = any(m.user_id == user_id for m in community.members)
    if not already_joined:
        community.members.append(CommunityMember(user_id=user_id))
        await commit_or_500(db, logger, "community membership")
        logger.info("User %s joined community %s", user_id, community.id)

    community = await load_community(db, community.id)
    return {
        "community": serialize_community(community, user_id, coordinator.registry),
        "message": "Already a member" if already_joined else "Joined successfully",
    }


@router.put("/{community_id}")
async def update_community(
    community_id: int,
    payload: CommunityUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    coordinator: Coordinator = Depends(get_coordinator),
):
    community = await load_community(db, community_id)
    if community.created_by != user_id:
        raise HTTPException(status_code=403, detail="Only the community creator can update this community")

    if payload.name is not None:
        community.name = payload.name
    if payload.description is not None:
        community.description = payload.description
    if payload.invite_code is not None and payload.invite_code != community.invite_code:
        await ensure_code_available(db, payload.invite_code, community_id)
        community.invite_code = payload.invite_code

    await commit_or_500(db, logger, "community update")

    community = await load_community(db, community_id)
    return {"community": serialize_community(community, user_id, coordinator.registry)}


@router.get("/{community_id}")
async def get_community(
    community_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    coordinator: Coordinator = Depends(get_coordinator),
):
    community = await load_community(db, community_id)

    result = await db.execute(
        select(ChatMessage)
        .options(selectinload(ChatMessage.sender))
        .where(ChatMessage.community_id == community_id)
        .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
        .limit(MESSAGE_HISTORY_LIMIT)
    )
    messages = list(reversed(result.scalars().all()))

    return {
        "community": serialize_community(community, user_id, coordinator.registry),
        "messages": [serialize_message(c) for c in messages],
        "online_user_ids": coordinator.registry.online_user_ids(),
    }
