import logging
import os
from typing import Any, Dict

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from . import admin, auth, config, database, habits, sleep, subscription, tracking, widgets
from .errors import install_error_handlers

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# -----------------------------
# App
# -----------------------------

app = FastAPI(title=config.APP_TITLE)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)

api_router = APIRouter(prefix="/api")
for module in (auth, habits, tracking, sleep, widgets, subscription, admin):
    api_router.include_router(module.router)


@api_router.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "app": config.APP_TITLE}


app.include_router(api_router)

os.makedirs(config.UPLOAD_DIR, exist_ok=True)

# Serve uploaded payment screenshots
app.mount("/api/uploads", StaticFiles(directory=config.UPLOAD_DIR), name="uploads")


@app.on_event("startup")
async def on_startup() -> None:
    if not config.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not set")
    if database.mongo_db is None:
        database.connect(config.MONGO_URL)
    await database.ensure_indexes(database.mongo_db)
    logger.info("%s started", config.APP_TITLE)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    database.close()
    logger.info("%s stopped", config.APP_TITLE)


def run() -> None:
    import uvicorn

    uvicorn.run("habit_tracker.server:app", host="0.0.0.0", port=int(os.environ.get("PORT", "8001")))
