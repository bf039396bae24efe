"""FastAPI application entrypoint for the freevox voice relay."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .routers import conversations, realtime

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not settings.openai_api_key:
        logger.error("Missing OPENAI_API_KEY in environment; voice sessions will fail to connect.")
    yield


app = FastAPI(lifespan=lifespan)
app.include_router(realtime.router)
app.include_router(conversations.router)


@app.get("/")
async def root() -> dict[str, str]:
    """Lightweight health endpoint for service discovery."""
    return {"service": "freevox", "status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        # Audio chunks arrive as base64 text frames.
        ws_max_size=16 * 1024 * 1024,
    )
