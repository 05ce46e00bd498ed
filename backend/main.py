import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


async def _reap_expired_sessions() -> None:
    """Background loop: drop games that outlived the session TTL."""
    from agents.game_master import game_master

    while True:
        await asyncio.sleep(settings.reaper_interval_seconds)
        try:
            await game_master.reap_expired()
        except Exception:
            logger.exception("Session reaper pass failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from agents.game_master import game_master

    logger.info("Mystery party backend starting up...")
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set — mysteries will use the built-in case")
    reaper = asyncio.create_task(_reap_expired_sessions())
    yield
    reaper.cancel()
    game_master.shutdown()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Mystery Party",
    version="0.1.0",
    description="Real-time multiplayer murder mystery — AI-generated cases, shared investigation, vote and reveal",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "mystery-party", "version": "0.1.0"}


from routers.game_router import router as game_router
from routers.ws_router import router as ws_router

app.include_router(game_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
