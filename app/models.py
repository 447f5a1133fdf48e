from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from .database import Base
from datetime import datetime, timezone


def utcnow():
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(80), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    location = Column(String(120), nullable=False, default="Unknown")
    skill_level = Column(Integer, nullable=False, default=3)
    profile_image = Column(String(500), nullable=False, default="")
    is_online = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)


class Match(Base):
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, index=True)
    sport = Column(String(60), nullable=False, index=True)
    date_time = Column(DateTime, nullable=False, index=True)
    location = Column(String(120), nullable=False)
    max_players = Column(Integer, nullable=False)
    skill_requirement = Column(Integer, nullable=False, default=1)
    description = Column(String(500), nullable=False, default="")
    community_code = Column(String(8), nullable=False, default="")  # "" means open to everyone
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    team_a = Column(JSON, nullable=False, default=list)
    team_b = Column(JSON, nullable=False, default=list)
    teams_manual = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    creator = relationship("User", foreign_keys=[created_by])
    participants = relationship(
        "MatchParticipant",
        back_populates="match",
        order_by="MatchParticipant.id",
        cascade="all, delete-orphan",
    )

    @property
    def current_players(self):
        return len(self.participants)

    @property
    def is_full(self):
        return self.current_players >= self.max_players


class MatchParticipant(Base):
    """One roster slot: the joining user plus the contact details given at join time."""

    __tablename__ = "match_participants"
    __table_args__ = (UniqueConstraint("match_id", "user_id"),)

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(80), nullable=False)
    skill = Column(String(20), nullable=False)
    age = Column(Integer, nullable=False)
    phone = Column(String(30), nullable=False)
    joined_at = Column(DateTime, default=utcnow)

    match = relationship("Match", back_populates="participants")
    user = relationship("User")


class Community(Base):
    __tablename__ = "communities"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False, index=True)
    description = Column(String(1000), nullable=False, default="")
    invite_code = Column(String(8), nullable=False, unique=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    creator = relationship("User", foreign_keys=[created_by])
    members = relationship(
        "CommunityMember",
        back_populates="community",
        order_by="CommunityMember.id",
        cascade="all, delete-orphan",
    )


class CommunityMember(Base):
    __tablename__ = "community_members"
    __table_args__ = (UniqueConstraint("community_id", "user_id"),)

    id = Column(Integer, primary_key=True, index=True)
    community_id = Column(Integer, ForeignKey("communities.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    joined_at = Column(DateTime, default=utcnow)

    community = relationship("Community", back_populates="members")
    user = relationship("User")


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    # exactly one of match_id / community_id is set
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=True, index=True)
    community_id = Column(Integer, ForeignKey("communities.id", ondelete="CASCADE"), nullable=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    message = Column(String(500), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    sender = relationship("User")
