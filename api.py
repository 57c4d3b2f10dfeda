"""
Kids Learning Progress Engine API

Serves content progress, star rewards, streaks, badges and course
unlocking under /api/v1.

Run locally with:
    uvicorn api:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from common.database import MongoDB
from common.utils import APIException, error_response, success_response

from progress_engine.config import settings
from progress_engine.database import ensure_indexes
from progress_engine.dependencies import init_all_services
from progress_engine.routers import (
    progress_router,
    stats_router,
    courses_router,
    admin_router,
)

API_PREFIX = "/api/v1"
VERSION = "1.0.0"

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

mongo = MongoDB()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect to MongoDB, prepare indexes and wire services; disconnect on exit."""
    settings.validate_required()
    logger.info(f"Progress engine {VERSION} starting ({settings.ENVIRONMENT})")

    await mongo.connect(
        uri=settings.MONGODB_URI,
        database_name=settings.MONGODB_DATABASE,
        server_selection_timeout_ms=settings.MONGODB_SERVER_SELECTION_TIMEOUT_MS,
        app_name=settings.MONGODB_APP_NAME,
    )

    if settings.ENSURE_INDEXES_ON_STARTUP:
        await ensure_indexes(mongo.db)

    init_all_services(db=mongo.db, config=settings)
    logger.info("Progress engine ready")

    yield

    logger.info("Progress engine shutting down")
    await mongo.disconnect()


app = FastAPI(
    title="Kids Learning Progress Engine",
    description="Progress tracking, star rewards, streaks, badges and course unlocking",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.is_development() else None,
    redoc_url="/redoc" if settings.is_development() else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router, tag in (
    (progress_router, "Progress"),
    (stats_router, "Stats"),
    (courses_router, "Courses"),
    (admin_router, "Admin"),
):
    app.include_router(router, prefix=API_PREFIX, tags=[tag])


# ─────────────────────────────────────────────────────────────────
# Error envelopes
# ─────────────────────────────────────────────────────────────────


@app.exception_handler(APIException)
async def handle_api_exception(request: Request, exc: APIException):
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    """Malformed bodies and query params share the INVALID_PAYLOAD envelope."""
    errors = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    logger.info(f"Rejected {request.method} {request.url.path}: {errors}")
    return JSONResponse(
        status_code=400,
        content=error_response(
            errors[0] if errors else "Invalid request",
            code="INVALID_PAYLOAD",
            details={"errors": errors},
        ),
    )


@app.get("/health", tags=["Health"])
async def health():
    """Liveness plus a live database ping."""
    database_up = await mongo.ping()
    body = success_response({
        "status": "ok" if database_up else "degraded",
        "version": VERSION,
        "database": database_up,
    })
    return JSONResponse(status_code=200 if database_up else 503, content=body)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api:app", host=settings.HOST, port=settings.PORT, reload=settings.is_development())
