import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from atende.config import settings
from atende.database import get_db
from atende.logging_config import get_logger, setup_logging
from atende.models import Case, Department, Message
from atende.routers import admin, webhook
from atende.services.session_service import session_service

setup_logging(settings.log_level)

app = FastAPI(
    title="Atende Cidadão API",
    description="WhatsApp service desk routing citizens to municipal departments",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)

sweep_logger = get_logger("sweep_worker")
_sweep_worker_task: asyncio.Task | None = None


def _is_sweep_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.sweep_enabled


async def _sweep_worker_loop() -> None:
    while True:
        try:
            await asyncio.sleep(max(settings.sweep_interval_seconds, 1.0))
            stats = await session_service.run_sweep()
            if any(stats.values()):
                sweep_logger.info("Sweep processed", extra={"context": stats})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            sweep_logger.error(
                "Sweep worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_sweep_worker() -> None:
    global _sweep_worker_task
    if not _is_sweep_worker_enabled():
        return
    if _sweep_worker_task is None or _sweep_worker_task.done():
        _sweep_worker_task = asyncio.create_task(_sweep_worker_loop())
        sweep_logger.info("Sweep worker started")


@app.on_event("shutdown")
async def stop_sweep_worker() -> None:
    global _sweep_worker_task
    if _sweep_worker_task is None:
        return
    _sweep_worker_task.cancel()
    try:
        await _sweep_worker_task
    except asyncio.CancelledError:
        pass
    _sweep_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "cases": db.query(Case).count(),
        "messages": db.query(Message).count(),
        "departments": db.query(Department).count(),
    }
