import time
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse

from personalization.config import KAFKA_ENABLED, REDIS_HOST, REDIS_PORT, SERVICE_NAME
from personalization.engine import PersonalizationEngine, build_engine
from personalization.errors import EngineError
from personalization.gateways import KafkaSegmentationPublisher, VoucherGateway
from personalization.logging import setup_logging
from personalization.observability import setup_metrics, setup_tracing
from personalization.serve.dependencies import get_engine, get_redis_client
from personalization.serve.schemas import (
    BatchAnalyzeRequest,
    BuildSuggestionsRequest,
    ClearCacheResponse,
    CompatibleRequest,
    ErrorResponse,
)

logger = setup_logging("api.log")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing connections...")
    app.state.redis_client = redis.Redis(
        host=REDIS_HOST, port=REDIS_PORT, decode_responses=True
    )

    sinks = [VoucherGateway()]
    if KAFKA_ENABLED:
        try:
            sinks.append(KafkaSegmentationPublisher())
            logger.info("Kafka segmentation publisher initialized")
        except Exception as e:
            logger.warning(f"Kafka publisher failed to initialize: {e}")

    app.state.engine = build_engine(app.state.redis_client, sinks=sinks)

    yield
    logger.info("Closing connections...")
    await app.state.engine.close()
    await app.state.redis_client.aclose()


app = FastAPI(title="PersonalizationEngineAPI", lifespan=lifespan)

setup_metrics(app)
setup_tracing(app, SERVICE_NAME)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    body = ErrorResponse(
        error=type(exc).__name__, message=exc.message, details=exc.details
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@app.get("/health/live")
async def health_check_live():
    return {"status": "ok"}


@app.get("/health/ready")
async def health_check(
    response: Response,
    redis_conn: redis.Redis = Depends(get_redis_client),
    engine: PersonalizationEngine = Depends(get_engine),
):
    health_status = {"status": "ok", "components": {}}
    has_error = False

    # redis
    start_time = time.time()
    try:
        await redis_conn.ping()
        latency = (time.time() - start_time) * 1000
        health_status["components"]["redis"] = {
            "status": "up",
            "latency_ms": round(latency, 2),
        }
    except Exception as e:
        has_error = True
        health_status["components"]["redis"] = {"status": "down", "error": str(e)}

    # collaborator services
    for gateway in (engine.behavior, engine.orders, engine.products, engine.customers):
        start_time = time.time()
        try:
            await gateway.ping()
            latency = (time.time() - start_time) * 1000
            health_status["components"][gateway.name] = {
                "status": "up",
                "latency_ms": round(latency, 2),
            }
        except EngineError as e:
            has_error = True
            health_status["components"][gateway.name] = {
                "status": "down",
                "error": e.message,
            }

    if has_error:
        health_status["status"] = "error"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        response.status_code = status.HTTP_200_OK

    return health_status


# -----------------------------------------------------------------------------
# Recommendations
# -----------------------------------------------------------------------------


@app.get("/recommendations/favorites")
async def get_favorites(
    user_id: str = Query(..., alias="userId", description="Subject to rank favorites for"),
    time_window: int = Query(30, alias="timeWindow", gt=0, le=365, description="Days"),
    limit: int = Query(20, gt=0, le=100),
    category: Optional[str] = Query(None, description="Category id or name"),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.get_favorites(user_id, time_window, limit, category)


@app.get("/recommendations/similar")
async def get_similar(
    product_id: str = Query(..., alias="productId"),
    limit: int = Query(10, gt=0, le=100),
    category: Optional[str] = Query(None, description="Override the reference category"),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.get_similar(product_id, limit, category)


@app.get("/recommendations/personalized")
async def get_personalized(
    user_id: str = Query(..., alias="userId"),
    component_type: Optional[str] = Query(None, alias="componentType"),
    strategy: str = Query("hybrid", description="hybrid, collaborative or content"),
    limit: int = Query(20, gt=0, le=100),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.get_personalized(user_id, component_type, strategy, limit)


@app.post("/recommendations/compatible")
async def get_compatible(
    request: CompatibleRequest,
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.get_compatible(
        request.component_type,
        request.current_components,
        request.limit,
        request.budget_min,
        request.budget_max,
        request.brand_preferences,
    )


@app.post("/recommendations/build-suggestions")
async def get_build_suggestions(
    request: BuildSuggestionsRequest,
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.get_build_suggestions(
        request.current_config, request.category_id, request.limit
    )


@app.post("/recommendations/clear-cache", response_model=ClearCacheResponse)
async def clear_cache(
    prefix: Optional[str] = Query(None, description="Key prefix, defaults to the whole cache"),
    engine: PersonalizationEngine = Depends(get_engine),
):
    deleted = await engine.clear_cache(prefix)
    logger.info(f"Cache cleared: {deleted} keys")
    return ClearCacheResponse(deleted=deleted, prefix=prefix)


# -----------------------------------------------------------------------------
# Segmentation
# -----------------------------------------------------------------------------


@app.get("/segmentation/stats")
async def get_segmentation_stats(
    force_reanalyze: bool = Query(False, alias="forceReanalyze"),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.get_segmentation_stats(force_reanalyze)


@app.post("/segmentation/analyze/all")
async def analyze_all(
    force: bool = Query(True),
    batch_size: int = Query(10, alias="batchSize", gt=0, le=100),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.analyze_all(force=force, batch_size=batch_size)


@app.post("/segmentation/analyze/batch")
async def analyze_batch(
    request: BatchAnalyzeRequest,
    engine: PersonalizationEngine = Depends(get_engine),
):
    results = await engine.analyze_batch(
        request.user_ids, batch_size=request.batch_size, force=request.force
    )
    return {"results": results}


@app.get("/segmentation/analyze/{user_id}")
async def get_customer_segmentation(
    user_id: str,
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.analyze_customer(user_id)


@app.post("/segmentation/analyze/{user_id}")
async def reanalyze_customer(
    user_id: str,
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.analyze_customer(user_id, force=True)


@app.get("/segmentation/customers/{segment}")
async def customers_by_segment(
    segment: str,
    page: int = Query(1, gt=0),
    limit: int = Query(20, gt=0, le=100),
    engine: PersonalizationEngine = Depends(get_engine),
):
    return await engine.customers_by_segment(segment, page, limit)
