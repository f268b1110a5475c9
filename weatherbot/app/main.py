import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config import get_settings
from .db import close_pool, create_pool, migrate, ping
from .dispatcher import Dispatcher, is_valid_city_name
from .errors import (
    CityNotFound,
    CorruptedCall,
    DecodeError,
    ExternalProviderError,
    NoData,
    PipelineClosed,
    StorageError,
)
from .forecast import OpenWeatherClient
from .pipeline import ForecastPipeline
from .schemas import ForecastResult, ForecastStatistics
from .storage import ForecastStore
from .telegram import TelegramClient, telegram_worker

settings = get_settings()
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Preparing postgres pool")
    db_pool = await create_pool(settings)
    await migrate(db_pool)
    store = ForecastStore(db_pool)

    logger.info("Preparing forecaster")
    weather_client = OpenWeatherClient(
        settings.openweathermap_api_token,
        base_url=settings.forecast_base_url,
        timeout=settings.forecast_timeout_seconds,
    )
    pipeline = ForecastPipeline(weather_client)
    pipeline.start()
    dispatcher = Dispatcher(pipeline, store)

    bot = None
    bot_task = None
    if settings.telegram_bot_token:
        logger.info("Starting telegram bot listener")
        bot = TelegramClient(
            settings.telegram_bot_token,
            base_url=settings.telegram_base_url,
            poll_timeout=settings.telegram_poll_timeout,
        )
        bot_task = asyncio.create_task(
            telegram_worker(bot, dispatcher, retry_seconds=settings.telegram_retry_seconds)
        )
    else:
        logger.info("Telegram listener disabled (no TELEGRAM_BOT_TOKEN).")

    app.state.db_pool = db_pool
    app.state.store = store
    app.state.pipeline = pipeline
    app.state.dispatcher = dispatcher
    app.state.bot_task = bot_task

    yield

    # Shutdown order: stop listening, drain the pipeline, close clients, close DB pool.
    if bot_task:
        bot_task.cancel()
        try:
            await bot_task
        except asyncio.CancelledError:
            pass
    await pipeline.close()
    await weather_client.aclose()
    if bot:
        await bot.aclose()
    await close_pool(db_pool)


app = FastAPI(
    title="Weather Bot",
    version="0.1.0",
    description="Answers chat forecast commands, stores them and serves forecast statistics.",
    lifespan=lifespan,
)


def get_store(request: Request) -> ForecastStore:
    return request.app.state.store


def get_pipeline(request: Request) -> ForecastPipeline:
    return request.app.state.pipeline


async def require_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")):
    expected = settings.api_key
    if expected and x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")


async def _db_ok(request: Request) -> bool:
    try:
        await ping(request.app.state.db_pool, settings.db_ping_timeout_seconds)
    except Exception as exc:  # pragma: no cover - lightweight health check
        logger.warning("Database ping failed: %s", exc)
        return False
    return True


def _task_running(task: Optional[asyncio.Task]) -> bool:
    return task is not None and not task.done()


@app.get("/health")
async def health(request: Request):
    db_ok = await _db_ok(request)
    return {
        "status": "ok",
        "db": "ok" if db_ok else "error",
        "pipeline_running": request.app.state.pipeline.running,
        "bot_listening": _task_running(request.app.state.bot_task),
    }


@app.get("/ready")
async def ready(request: Request):
    """
    Readiness probe: returns 503 if the DB or the forecast pipeline are unavailable.
    """
    db_ok = await _db_ok(request)
    pipeline_ok = request.app.state.pipeline.running
    if not (db_ok and pipeline_ok):
        raise HTTPException(
            status_code=503,
            detail={"db": db_ok, "pipeline": pipeline_ok},
        )
    return {"status": "ready", "db": db_ok, "pipeline": pipeline_ok}


@app.get(
    "/stats",
    response_model=ForecastStatistics,
    summary="Statistics over every stored forecast",
)
async def stats(
    _: None = Depends(require_api_key),
    store: ForecastStore = Depends(get_store),
):
    try:
        return await store.stat()
    except NoData as exc:
        raise HTTPException(status_code=404, detail="No forecasts stored yet.") from exc
    except StorageError as exc:
        logger.error("Stat failed: %s", exc)
        raise HTTPException(status_code=503, detail="Statistics unavailable.") from exc


@app.get(
    "/cities/{city}/forecast",
    response_model=ForecastResult,
    summary="Current weather via the serialized forecast pipeline (not stored).",
)
async def forecast(
    city: str,
    _: None = Depends(require_api_key),
    pipeline: ForecastPipeline = Depends(get_pipeline),
):
    if not is_valid_city_name(city):
        raise HTTPException(status_code=400, detail="Invalid city name.")
    try:
        return await pipeline.forecast(city)
    except CityNotFound as exc:
        raise HTTPException(status_code=404, detail="Unknown city.") from exc
    except (ExternalProviderError, CorruptedCall, DecodeError) as exc:
        raise HTTPException(status_code=502, detail="Forecast provider error.") from exc
    except PipelineClosed as exc:
        raise HTTPException(status_code=503, detail="Forecaster is shutting down.") from exc


@app.get("/metrics")
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def serve():
    """Run the service (and the Telegram listener in its lifespan) under uvicorn."""
    uvicorn.run(
        "weatherbot.app.main:app",
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    serve()
