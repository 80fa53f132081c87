"""
FastAPI application for the valuation engine.

Production deployment configuration via environment variables
(see utils.config.Config).
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from avm import __version__
from avm.comp_engine import (
    CompSetNotFound,
    Conflict,
    MissingRuleParameter,
    NoComparablesFound,
    SubjectNotFound,
    ValidationError,
)
from avm.compsets import get_compset_repository
from avm.store import get_comparable_store
from utils.config import Config
from utils.logging_config import configure_logging
from web.compset_routes import router as compset_router
from web.valuation_routes import router as valuation_router


logger = logging.getLogger(__name__)


# =============================================================================
# Error Mapping
# =============================================================================


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "field": exc.field, "constraint": exc.constraint},
        )

    @app.exception_handler(MissingRuleParameter)
    async def missing_rule(request: Request, exc: MissingRuleParameter):
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "field": exc.parameter, "constraint": "is required"},
        )

    @app.exception_handler(NoComparablesFound)
    async def no_comparables(request: Request, exc: NoComparablesFound):
        return JSONResponse(
            status_code=404,
            content={
                "detail": f"{exc}. Relax the search filters and try again.",
                "stage": exc.stage,
                "candidates_considered": exc.candidates_considered,
                "stale_excluded": exc.stale_excluded,
            },
        )

    @app.exception_handler(Conflict)
    async def conflict(request: Request, exc: Conflict):
        return JSONResponse(
            status_code=409,
            content={
                "detail": str(exc),
                "expected_version": exc.expected_version,
                "actual_version": exc.actual_version,
            },
        )

    @app.exception_handler(CompSetNotFound)
    async def compset_not_found(request: Request, exc: CompSetNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SubjectNotFound)
    async def subject_not_found(request: Request, exc: SubjectNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or Config.load()
    configure_logging(config.log_level)

    app = FastAPI(
        title="Comparable Valuation Engine",
        description="Comparable-based automated valuation of residential property",
        version=__version__,
        debug=config.debug,
    )
    app.state.config = config

    # Healthcheck endpoints first; no dependencies, no IO.
    @app.get("/", include_in_schema=False)
    def root():
        return {"status": "ok"}

    @app.get("/health", include_in_schema=False)
    def health():
        return {"status": "healthy"}

    if config.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.allowed_origins,
            allow_credentials="*" not in config.allowed_origins,
            allow_methods=["GET", "POST", "PUT", "DELETE"],
            allow_headers=["*"],
        )

    # Singletons are bound to the configured paths on first use
    store = get_comparable_store(config.comparables_path)
    get_compset_repository(store, config.compsets_path)

    _register_error_handlers(app)
    app.include_router(valuation_router)
    app.include_router(compset_router)

    @app.get("/api/health")
    async def api_health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "comparables": get_comparable_store().count(),
        }

    logger.info(
        "Valuation engine ready (%d comparables, data dir %s)",
        store.count(),
        config.data_dir,
    )
    return app


# Create app instance for uvicorn
app = create_app()
