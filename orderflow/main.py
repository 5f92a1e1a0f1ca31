"""
Order lifecycle API.
Run: uvicorn orderflow.main:app
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from orderflow.config import settings
from orderflow.db import PostgresOrderStore, close_pool, get_pool, init_schema
from orderflow.engine import OrderLifecycleEngine
from orderflow.errors import OrderError
from orderflow.metrics import get_metrics_bytes, get_metrics_content_type
from orderflow.notifier import NotificationDispatcher, RedisNotifier
from orderflow.queries import OrderQueryService
from orderflow.redis_client import close_redis, get_redis
from orderflow.routes import orders

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await get_pool()
    await init_schema(pool)
    store = PostgresOrderStore(pool)
    dispatcher = NotificationDispatcher(RedisNotifier(await get_redis()))
    app.state.engine = OrderLifecycleEngine(store, dispatcher)
    app.state.queries = OrderQueryService(store)
    logger.info("Schema ready. Publishing notifications on %s<user_id>", settings.notification_channel_prefix)
    yield
    await dispatcher.drain()
    await close_redis()
    await close_pool()
    logger.info("Order service stopped.")


app = FastAPI(title="Order Lifecycle", lifespan=lifespan)
app.include_router(orders.router)


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
    content = {"status": "error", "error": exc.kind, "detail": exc.detail}
    headers = {"Retry-After": "1"} if exc.status_code == 503 else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: transitions committed/rejected, notification outcomes."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
