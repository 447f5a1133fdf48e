from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.exc import IntegrityError
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
import bcrypt
import logging
import os

from app.database import get_db
from app.models import User
from app.schemas import UserCreate, LoginRequest, TokenResponse, UserResponse

logger = logging.getLogger(__name__)

# ✅ Get secrets from environment variables
SECRET_KEY = os.getenv("SECRET_KEY", "fallback_key")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


# ✅ Password helpers
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# ✅ Token helpers
def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_user_id(token: str) -> int:
    """Return the user id carried by a token, raising JWTError when it is unusable."""
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError):
        raise JWTError("Token subject is not a user id")


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> int:
    try:
        return decode_user_id(token)
    except JWTError as e:
        logger.warning("Rejected token: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def issue_token(user: User) -> dict:
    token = create_access_token({"sub": str(user.id)})
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user)).model_dump()


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    user = result.scalars().first()
    if not user or not verify_password(password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


# ✅ Endpoints
router = APIRouter()


@router.post("/auth/register", status_code=201)
async def register(payload: UserCreate, db: AsyncSession = Depends(get_db)):
    existing = await db.execute(select(User).where(User.email == payload.email))
    if existing.scalars().first():
        raise HTTPException(status_code=409, detail="An account with this email already exists")

    user = User(
        name=payload.name,
        email=payload.email,
        password_hash=hash_password(payload.password),
        location=(payload.location or "").strip() or "Unknown",
        skill_level=payload.skill_level,
        profile_image=(payload.profile_image or "").strip(),
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="An account with this email already exists")

    await db.refresh(user)
    logger.info("Registered user %s", user.id)
    return issue_token(user)


@router.post("/auth/login")
async def login(credentials: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await authenticate(db, credentials.email, credentials.password)
    return issue_token(user)


@router.post("/token")
async def login_token(form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(get_db)):
    user = await authenticate(db, form_data.username, form_data.password)
    return {"access_token": create_access_token({"sub": str(user.id)}), "token_type": "bearer"}
