# utilitrack/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from utilitrack.api.billing import router as billing_router
from utilitrack.api.complaints import router as complaints_router
from utilitrack.api.connections import router as connections_router
from utilitrack.api.customers import router as customers_router
from utilitrack.api.meters import router as meters_router
from utilitrack.api.payments import router as payments_router
from utilitrack.api.readings import router as readings_router
from utilitrack.api.reports import router as reports_router
from utilitrack.api.tariffs import router as tariffs_router
from utilitrack.config import settings
from utilitrack.db.engine import build_engine
from utilitrack.db.schema import create_schema
from utilitrack.errors import DatabaseError, UtiliTrackError
from utilitrack.models.common import ErrorResponse

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Statuses documented with the error envelope on every route.
ERROR_STATUSES = (400, 404, 409, 422, 500)


def _error(status_code: int, message: str, details=None) -> JSONResponse:
    body = {"success": False, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def _describe(error: dict) -> str:
    field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
    return f"{field}: {error.get('msg')}" if field else error.get("msg", "Invalid value")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(UtiliTrackError)
    async def utilitrack_error(request: Request, exc: UtiliTrackError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.message)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        details = [_describe(error) for error in exc.errors()]
        return _error(400, details[0] if details else "Invalid request", details)

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(SQLAlchemyError)
    async def database_error(request: Request, exc: SQLAlchemyError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        error = DatabaseError()
        return _error(error.status_code, error.message)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal server error")


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the API. Pass an engine to run against a specific database (tests
    do); otherwise one is built from DATABASE_URL.
    """
    if engine is None:
        engine = build_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.CREATE_SCHEMA_ON_STARTUP:
            create_schema(engine)
        logger.info("UtiliTrack API started (database: %s)", engine.url.render_as_string(hide_password=True))
        yield

    app = FastAPI(
        title="UtiliTrack Utility Billing API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    api = APIRouter(
        prefix="/api",
        responses={status: {"model": ErrorResponse} for status in ERROR_STATUSES},
    )

    @api.get("/health", tags=["health"])
    def health_check():
        return {"success": True, "status": "ok"}

    @api.get("/test", tags=["health"])
    def test_route():
        return {"success": True, "message": "UtiliTrack API is running"}

    api.include_router(customers_router)
    api.include_router(connections_router)
    api.include_router(meters_router)
    api.include_router(readings_router)
    api.include_router(tariffs_router)
    api.include_router(billing_router)
    api.include_router(payments_router)
    api.include_router(complaints_router)
    api.include_router(reports_router)
    app.include_router(api)

    return app


app = create_app()
