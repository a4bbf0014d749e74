import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from polyglot.application.config import resolve_config
from polyglot.application.factory import Services, build_services
from polyglot.application.phrase_service import PhraseService
from polyglot.application.stats import RetentionAnalyzer, get_due_cards
from polyglot.consts import VERSION
from polyglot.domain.errors import PhraseNotFoundError

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("polyglot.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"polyglot server v{VERSION} starting up...")
    services = build_services(resolve_config())

    result = await services.migration.run_migration()
    if not result.success:
        logger.error(f"Migration failed, store left at previous schema: {result.error}")

    phrases = await services.open_phrase_service(attach=True)
    services.retry_runner.start()

    app.state.services = services
    app.state.phrases = phrases
    yield
    # Shutdown
    logger.info("polyglot server shutting down...")
    await services.close_phrase_service(phrases)
    await services.aclose()


app = FastAPI(
    title="polyglot server",
    description="Study queue and sync API for polyglot.",
    version=VERSION,
    lifespan=lifespan,
)


def _services(request: Request) -> Services:
    return request.app.state.services


def _phrases(request: Request) -> PhraseService:
    return request.app.state.phrases


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    cloud_enabled: bool


start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(
        status="ok",
        version=VERSION,
        uptime_seconds=time.time() - start_time,
        cloud_enabled=_services(request).storage.cloud_enabled,
    )


@app.get("/version")
async def get_version():
    return {"version": VERSION}


@app.get("/phrases/due")
async def due_phrases(
    request: Request, limit: int | None = Query(None, ge=1)
) -> list[dict[str, Any]]:
    """Phrases due now, most overdue first, in their stored JSON form."""
    cards = get_due_cards(_phrases(request).active(), limit=limit)
    return [p.to_wire() for p in cards]


class ReviewRequest(BaseModel):
    rating: int = Field(ge=1, le=4)


@app.post("/phrases/{phrase_id}/review")
async def review_phrase(phrase_id: str, req: ReviewRequest, request: Request):
    """Rate a recall attempt (1 again, 2 hard, 3 good, 4 easy)."""
    try:
        updated = await _phrases(request).review(phrase_id, req.rating)
    except PhraseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except Exception as e:
        logger.error(f"Review failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e
    return updated.to_wire()


@app.get("/stats")
async def get_stats(request: Request, days: int = Query(7, ge=0)):
    """Queue counts, retention and a `days`-long due forecast."""
    services = _services(request)
    analyzer = RetentionAnalyzer(forecast_days=days, tz=services.tz)
    return asdict(analyzer.summarize(_phrases(request).phrases.value))


@app.post("/sync/online")
async def sync_online(request: Request):
    """
    Tell the server connectivity is back; queued remote writes are replayed.
    """
    services = _services(request)
    services.online.notify_online()
    return {"ok": True, "queued": len(await services.retry_queue.get_queue())}
