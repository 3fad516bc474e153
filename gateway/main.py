import logging
import os
from pathlib import Path
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gateway.config import get_settings
from gateway.database import init_db, set_db_path
from gateway.routers import health, chat, models, costs

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    db_path = Path(settings.database_url)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    set_db_path(settings.database_url)
    await init_db()
    logger.info("Provider gateway started")

    yield

    logger.info("Provider gateway shutting down")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Provider Streaming Gateway",
        description="One streaming completion API over several LLM providers",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(chat.router)
    app.include_router(models.router)
    app.include_router(costs.router)

    # CORS: allowed origins from env, localhost by default
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    extra_origins = os.environ.get("ALLOWED_ORIGINS", "")
    if extra_origins:
        origins.extend(o.strip() for o in extra_origins.split(",") if o.strip())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()


@app.get("/")
async def read_root():
    return {
        "status": "ok",
        "message": "Provider gateway is running",
        "docs": "/docs",
    }
