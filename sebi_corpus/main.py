"""
HTTP entry point for the SEBI regulatory corpus
Serves hybrid search and admin ingestion over the Redis vector index
"""

import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.trace import TracerProvider

from sebi_corpus import __version__
from sebi_corpus.config import settings
from sebi_corpus.models.exceptions import CorpusAPIException, VectorStoreException
from sebi_corpus.routers import admin_router, health_router, search_router
from sebi_corpus.services import get_services, set_services
from sebi_corpus.utils.logger import setup_logging

logger = setup_logging(settings.LOG_LEVEL)

IS_PRODUCTION = settings.ENVIRONMENT == "production"

if IS_PRODUCTION:
    trace.set_tracer_provider(TracerProvider())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services and make sure the collection exists before serving"""
    logger.info(
        "corpus_api.starting",
        environment=settings.ENVIRONMENT,
        python=sys.version.split()[0],
        collection=settings.COLLECTION_NAME,
    )

    services = get_services()
    try:
        created = await services.retriever.initialize_collection()
    except VectorStoreException as e:
        logger.error("corpus_api.store_unavailable", error=e.message, context=e.context)
        raise

    logger.info("corpus_api.ready", collection_created=created)

    yield

    await services.close()
    set_services(None)
    logger.info("corpus_api.stopped")


def error_body(message: str, code: str, status_code: int, context: dict = None) -> dict:
    """Same envelope as CorpusAPIException.to_dict"""
    return {
        "error": {
            "message": message,
            "code": code,
            "status": status_code,
            "context": context or {},
        }
    }


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold the raised ValueError itself
    return [{key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()]


async def handle_corpus_error(request: Request, exc: CorpusAPIException) -> JSONResponse:
    """Pipeline and permission errors carry their own status"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "corpus_api.request_failed",
        path=request.url.path,
        code=exc.error_code,
        message=exc.message,
        context=exc.context,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_errors(exc)
    logger.info("corpus_api.request_invalid", path=request.url.path, num_errors=len(errors))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(
            "Invalid request data",
            "REQUEST_VALIDATION_ERROR",
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {"errors": errors},
        ),
    )


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "corpus_api.unhandled_error",
        path=request.url.path,
        error_type=type(exc).__name__,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            "An unexpected error occurred",
            "INTERNAL_ERROR",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CorpusAPIException, handle_corpus_error)
    app.add_exception_handler(RequestValidationError, handle_invalid_request)
    app.add_exception_handler(Exception, handle_unexpected)


app = FastAPI(
    title="SEBI Corpus API",
    description="Hierarchy-aware chunking and hybrid retrieval over SEBI circulars",
    version=__version__,
    docs_url=None if IS_PRODUCTION else "/docs",
    redoc_url=None if IS_PRODUCTION else "/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One log line per request with status and latency"""
    started = time.perf_counter()
    response = await call_next(request)

    logger.info(
        "corpus_api.request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        client_ip=request.client.host if request.client else None,
        duration_ms=int((time.perf_counter() - started) * 1000),
    )
    return response


register_exception_handlers(app)

for router in (health_router, search_router, admin_router):
    app.include_router(router)


@app.get("/", include_in_schema=False)
async def root():
    return {
        "name": "SEBI Corpus API",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "docs": None if IS_PRODUCTION else "/docs",
        "health": "/health",
        "search": "/api/v1/search",
    }


if IS_PRODUCTION:
    FastAPIInstrumentor.instrument_app(app)
    logger.info("corpus_api.telemetry_enabled")
