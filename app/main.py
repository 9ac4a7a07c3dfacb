import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from app.config import settings
from app.db import close_pool, get_pool, init_schema
from app.errors import OrderError
from app.metrics import get_metrics_bytes, get_metrics_content_type, notification_queue_depth, order_mutations_rejected_total
from app.queue import NOTIFICATION_QUEUE_KEY
from app.redis_client import close_redis, get_redis, list_length
from app.routes import orders, staff

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_schema(await get_pool())
    await get_redis()
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Order Tracking", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(staff.router)


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
    """Rejections are reported to the caller; the stored order is left as it was."""
    logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc)
    order_mutations_rejected_total.labels(reason=exc.code).inc()
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "rejected", "error": exc.code, "detail": str(exc)},
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: order mutations, notifications, Redis outbox depth."""
    if not settings.sqs_queue_url:
        try:
            notification_queue_depth.set(await list_length(NOTIFICATION_QUEUE_KEY))
        except Exception:
            logger.warning("Could not read outbox depth from Redis", exc_info=True)
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
