"""
PreOrder Manager — FastAPI entrypoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
import uvicorn

from preorder.api import analytics, health, preorders, queue, stream, templates
from preorder.core.config import get_settings
from preorder.core.errors import InvalidArgument, InvalidTransition, NotFoundError, PickupTooSoon
from preorder.core.redis_client import close_redis
from preorder.db.database import Base, engine

settings = get_settings()
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="TrioTect PreOrder Manager",
    description="Scheduled pickups with admission windows, live wait estimates and recurring weekly orders.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True,
                   allow_methods=["*"], allow_headers=["*"])

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


# ── Domain errors → HTTP ─────────────────────────────────────

@app.exception_handler(InvalidArgument)
async def invalid_argument_handler(request: Request, exc: InvalidArgument):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(PickupTooSoon)
async def pickup_too_soon_handler(request: Request, exc: PickupTooSoon):
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "earliest_pickup": exc.earliest_pickup.isoformat(),
            "advance_minutes": exc.advance_minutes,
        },
    )


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    # the console refreshes its view on 409
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "current_status": exc.current, "requested_status": exc.requested},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


app.include_router(preorders.router)
app.include_router(templates.router)
app.include_router(queue.router)
app.include_router(analytics.router)
app.include_router(stream.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}


def run() -> None:
    """Console entrypoint: serve the app on the configured host and port."""
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
