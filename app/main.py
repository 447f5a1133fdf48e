from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import contextlib
import uvicorn
import logging
import os
from dotenv import load_dotenv

# ✅ Load environment variables
load_dotenv()

# ✅ Import internal modules
from app.database import Base, engine, SessionLocal
from app.auth import router as auth_router
from app.routers.matches import router as matches_router
from app.routers.communities import router as communities_router
from app.realtime import Coordinator, SqlRealtimeStore, router as realtime_router
from app.cleanup import cleanup_loop

# ✅ Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ✅ Create DB tables on startup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    cleanup_task = asyncio.create_task(cleanup_loop(SessionLocal))
    yield
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup_task


# ✅ Initialize FastAPI app with redirect_slashes=False to avoid automatic redirects
app = FastAPI(redirect_slashes=False, lifespan=lifespan)

# ✅ One coordinator per process owns presence and chat rooms
app.state.coordinator = Coordinator(SqlRealtimeStore(SessionLocal))

# ✅ CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ✅ Health check
@app.get("/health")
async def health():
    return {"status": "ok"}


# ✅ Register routers
app.include_router(auth_router, tags=["Auth"])
app.include_router(matches_router, prefix="/matches", tags=["Matches"])
app.include_router(communities_router, prefix="/communities", tags=["Communities"])
app.include_router(realtime_router, tags=["Realtime"])

# ✅ Uvicorn entry point with proxy headers enabled
if __name__ == "__main__":
    forwarded_ips = os.getenv("FORWARDED_ALLOW_IPS", "*")

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        proxy_headers=True,
        forwarded_allow_ips=forwarded_ips,
    )
