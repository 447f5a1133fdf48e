from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy.exc import SQLAlchemyError
from fastapi import HTTPException
import os
from dotenv import load_dotenv

load_dotenv()  # Optional if you're also running locally with a .env file

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./matchmaking.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

engine_options = {"echo": SQL_ECHO}
if DATABASE_URL.startswith("sqlite"):
    # ✅ aiosqlite connections are bound to the loop that opened them
    engine_options["poolclass"] = NullPool

# ✅ Use create_async_engine for async operations
engine = create_async_engine(DATABASE_URL, **engine_options)

# ✅ Create an async session
SessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)

# ✅ Define Base for models
Base = declarative_base()

# ✅ Dependency to get the async session
async def get_db():
    async with SessionLocal() as session:
        yield session


async_session = SessionLocal


async def commit_or_500(db, logger, action: str):
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Error committing %s: %s", action, e)
        raise HTTPException(status_code=500, detail="Database commit error")
