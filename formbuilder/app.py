import logging
from contextlib import asynccontextmanager
from os import environ

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from formbuilder.api.v1.endpoints import binding, options, records, templates
from formbuilder.db.local_session import DatabaseManager
from formbuilder.utils.exceptions import (
    FormBuilderError,
    FormElementNotFoundError,
    FormValidationError,
    OptionLoadError,
    PersistenceError,
    RecordNotFoundError,
    TemplateNotFoundError,
)

# Configure logger
logger = logging.getLogger(__name__)

CORS_ORIGINS = [origin.strip() for origin in environ.get("CORS_ORIGINS", "*").split(",") if origin.strip()]

# Checked in order; the first matching class decides the status code
ERROR_STATUS_CODES = (
    (FormValidationError, 422),
    (TemplateNotFoundError, 404),
    (RecordNotFoundError, 404),
    (FormElementNotFoundError, 404),
    (OptionLoadError, 502),
    (PersistenceError, 500),
)


async def form_builder_error_handler(request: Request, exc: FormBuilderError) -> JSONResponse:
    status_code = next((code for cls, code in ERROR_STATUS_CODES if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    logger.info("Creating FastAPI application")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # DatabaseManager is a singleton; this makes sure the tables exist
        DatabaseManager()
        logger.info("Form builder API started")
        yield
        logger.info("Form builder API stopped")

    app = FastAPI(
        title="Form Builder API",
        description="Schema-driven form templates, records and form editing",
        version="1.0.0",
        lifespan=lifespan
    )

    # Register routers
    app.include_router(templates.router, prefix="/templates", tags=["templates"])
    app.include_router(records.router, prefix="/records", tags=["records"])
    app.include_router(binding.router, prefix="/binding", tags=["binding"])
    app.include_router(options.router, prefix="/options", tags=["options"])

    app.add_exception_handler(FormBuilderError, form_builder_error_handler)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app

# Create FastAPI application
app = create_app()
