"""Application entrypoint: sets up FastAPI app, CORS, logging, error handlers and registers API routers.

This file centralizes server bootstrap concerns (middleware, routers, log levels)
so the search and indexing services stay isolated in their respective modules.
"""
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from resumefind.api.deps import ServiceContainer, build_services
from resumefind.api.routers import feedback as feedback_router
from resumefind.api.routers import health as health_router
from resumefind.api.routers import index_admin as index_router
from resumefind.api.routers import resumes as resumes_router
from resumefind.api.routers import search as search_router
from resumefind.core.config import Settings, settings as default_settings
from resumefind.core.errors import (
    InvalidQuery,
    PdfExtractionError,
    RecordNotFound,
    ResumeFindError,
)


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

# Set specific log levels for different modules
logging.getLogger("search.service").setLevel(logging.INFO)
logging.getLogger("index.service").setLevel(logging.INFO)
logging.getLogger("index.vector").setLevel(logging.INFO)

# Reduce noise from external libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sentence_transformers").setLevel(logging.WARNING)
logging.getLogger("pdfminer").setLevel(logging.WARNING)

logger = logging.getLogger("app")

_STATUS_BY_ERROR = {
    InvalidQuery: 400,
    RecordNotFound: 404,
    PdfExtractionError: 422,
}


def _status_for(exc: ResumeFindError) -> int:
    for cls, status in _STATUS_BY_ERROR.items():
        if isinstance(exc, cls):
            return status
    return 500


async def handle_resumefind_error(request: Request, exc: ResumeFindError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s %s failed at %s: %s", request.method, request.url.path, exc.stage, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())


async def handle_record_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    # Raised at the record-store boundary when a document does not fit ResumeRecord
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid resume document", "code": "invalid_record", "stage": "records",
                 "retryable": False, "details": exc.errors(include_url=False)},
    )


def create_app(services: Optional[ServiceContainer] = None, app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or (services.settings if services else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = services or build_services(app_settings)
        app.state.services = container
        await container.startup()
        logger.info("%s started", app_settings.APP_NAME)
        yield

    app = FastAPI(title=app_settings.APP_NAME, version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ResumeFindError, handle_resumefind_error)
    app.add_exception_handler(ValidationError, handle_record_validation_error)

    app.include_router(health_router.router)
    app.include_router(search_router.router)
    app.include_router(feedback_router.router)
    app.include_router(resumes_router.router)
    app.include_router(index_router.router)

    return app


app = create_app()
