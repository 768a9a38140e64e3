"""
WCA Query Backend - HTTP API
============================

Read-only SQL access to the WCA database mirror for authenticated users.

Endpoints:
    POST /api/query     - run a SELECT / WITH ... SELECT / DESC statement (bearer auth)
    GET  /api/schema    - tables and columns for editor autocomplete (bearer auth)
    GET  /api/metadata  - timestamp of the last imported WCA export
    GET  /health        - liveness + database reachability

Every error body is {"error": "<message>"}.

Run:
    python main.py
    uvicorn main:create_app --factory
"""

import logging
import re
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import WcaUser, require_user
from database import QueryExecutionError, StoreUnavailableError, WcaDatabase
from query_pipeline import QueryPipeline
from settings import Settings, load_settings
from sql_validator import QueryValidationError

__version__ = "1.0.0"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
INTERNAL_ERROR_MESSAGE = "Internal server error"
LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?\d+)")

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("wca_query.access")


def configure_logging(level: str = "INFO") -> None:
    """Libraries at WARNING, our modules at the configured level."""
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
    for name in ("__main__", "main", "auth", "database", "query_pipeline",
                 "sql_validator", "settings", "wca_query"):
        logging.getLogger(name).setLevel(level)


# Pydantic Models
class QueryRequest(BaseModel):
    query: Any = None
    page: Optional[int] = None
    pageSize: Optional[int] = None

    @field_validator("page", "pageSize", mode="before")
    @classmethod
    def _lenient_positive_int(cls, value: Any) -> Optional[int]:
        # Unusable paging hints fall back to defaults instead of failing the request
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, str):
            # Leading integer prefix only: "2.5" -> 2, "3rd" -> 3
            match = LEADING_INT_PATTERN.match(value)
            if not match:
                return None
            value = match.group(1)
        try:
            number = int(value)
        except (TypeError, ValueError, OverflowError):
            return None
        return number if number >= 1 else None


# Dependencies
def get_database(request: Request) -> WcaDatabase:
    database = request.app.state.database
    if database is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return database


def get_pipeline(request: Request) -> QueryPipeline:
    pipeline = request.app.state.pipeline
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return pipeline


def create_app(settings: Optional[Settings] = None, database: Optional[WcaDatabase] = None) -> FastAPI:
    """
    Build the API.

    Args:
        settings: Configuration; loaded from the environment when omitted
        database: Pre-built store (tests). When omitted the engine is created
                  at startup and disposed at shutdown.
    """
    if settings is None:
        settings = load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_database = app.state.database is None
        if owns_database:
            logger.info("Initializing WCA query backend...")
            app.state.database = WcaDatabase.from_url(settings.database_url, settings.db_pool_size)
            app.state.pipeline = QueryPipeline(app.state.database, settings.max_user_limit)

        yield

        if owns_database:
            logger.info("Shutting down WCA query backend...")
            app.state.database.dispose()
            app.state.database = None
            app.state.pipeline = None

    app = FastAPI(
        title="WCA Query API",
        description="Read-only SQL over the WCA database export",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.pipeline = QueryPipeline(database, settings.max_user_limit) if database else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        client = request.client.host if request.client else "-"
        access_logger.info(
            f'{client} "{request.method} {request.url.path}" '
            f"{response.status_code} {elapsed_ms:.1f}ms"
        )
        return response

    _register_error_handlers(app)
    _register_routes(app, settings)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable(request: Request, exc: StoreUnavailableError):
        return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})


def _register_routes(app: FastAPI, settings: Settings) -> None:
    @app.get("/health")
    def health_check(request: Request):
        """Health check endpoint"""
        database = request.app.state.database
        reachable = database.ping() if database is not None else False
        return {
            "status": "healthy" if reachable else "degraded",
            "version": __version__,
            "database": reachable,
        }

    @app.get("/api/metadata")
    def get_metadata(database: WcaDatabase = Depends(get_database)):
        """Timestamp of the WCA export currently loaded"""
        timestamp = database.get_export_timestamp()
        if timestamp is None:
            raise HTTPException(status_code=404, detail="No export metadata found")
        return {"export_timestamp": timestamp}

    @app.get("/api/schema")
    def get_schema(
        user: WcaUser = Depends(require_user),
        database: WcaDatabase = Depends(get_database),
    ):
        """Tables and columns of the mirror, for editor autocomplete"""
        return database.get_schema()

    @app.post("/api/query")
    def run_query(
        body: QueryRequest,
        user: WcaUser = Depends(require_user),
        pipeline: QueryPipeline = Depends(get_pipeline),
    ):
        page = body.page or 1
        page_size = body.pageSize or settings.default_page_size

        try:
            result = pipeline.run(body.query, page, page_size, user)
        except (QueryValidationError, QueryExecutionError) as e:
            raise HTTPException(status_code=400, detail=str(e))

        return result.to_response()


if __name__ == "__main__":
    import uvicorn
    from env_guard import validate_environment

    validate_environment()
    app_settings = load_settings()
    uvicorn.run(
        create_app(app_settings),
        host=app_settings.host,
        port=app_settings.port,
        log_level=app_settings.log_level.lower(),
    )
