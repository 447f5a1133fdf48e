from typing import Optional, List, Union
from pydantic import BaseModel, Field, field_validator
from datetime import datetime


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class UserCreate(BaseModel):
    name: str = Field(min_length=2, max_length=80)
    email: str
    password: str = Field(min_length=8)
    location: Optional[str] = "Unknown"
    skill_level: int = Field(default=3, ge=1, le=5)
    profile_image: Optional[str] = ""

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("email must be a valid address")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    location: str
    skill_level: int
    profile_image: str
    is_online: bool

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class MatchCreate(BaseModel):
    sport: str = Field(min_length=1, max_length=60)
    date_time: datetime
    location: str = Field(min_length=1, max_length=120)
    max_players: int = Field(ge=2)
    skill_requirement: int = Field(default=1, ge=1, le=5)
    description: Optional[str] = Field(default="", max_length=500)
    community_code: Optional[str] = ""

    @field_validator("sport", "location", "description", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("community_code", mode="before")
    @classmethod
    def normalize_code(cls, value):
        return (value or "").strip().upper()


class MatchUpdate(BaseModel):
    sport: Optional[str] = None
    date_time: Optional[datetime] = None
    location: Optional[str] = None
    max_players: Optional[int] = Field(default=None, ge=2)
    skill_requirement: Optional[int] = Field(default=None, ge=1, le=5)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("sport", "location", "description", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)


class MatchJoin(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    skill: str = Field(min_length=1, max_length=20)
    age: int = Field(ge=1, le=120)
    phone: str = Field(min_length=1, max_length=30)
    invite_code: Optional[str] = ""

    @field_validator("name", "skill", "phone", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("invite_code", mode="before")
    @classmethod
    def normalize_code(cls, value):
        return (value or "").strip().upper()


class ManualTeams(BaseModel):
    team_a: List[int]
    team_b: List[int]


class CommunityCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = Field(default="", max_length=1000)
    invite_code: str = Field(pattern=r"^[A-Z0-9]{6,8}$")

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("invite_code", mode="before")
    @classmethod
    def normalize_code(cls, value):
        return value.strip().upper() if isinstance(value, str) else value


class CommunityUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    invite_code: Optional[str] = Field(default=None, pattern=r"^[A-Z0-9]{6,8}$")

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("invite_code", mode="before")
    @classmethod
    def normalize_code(cls, value):
        return value.strip().upper() if isinstance(value, str) else value


class JoinByCode(BaseModel):
    invite_code: str = Field(min_length=1)

    @field_validator("invite_code", mode="before")
    @classmethod
    def normalize_code(cls, value):
        return value.strip().upper() if isinstance(value, str) else value


class RealtimeFrame(BaseModel):
    event: str
    ref: Optional[Union[int, str]] = None
    data: dict = Field(default_factory=dict)
