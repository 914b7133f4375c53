"""
HTTP Server
===========

FastAPI application exposing the section pipeline and the provider webhook.

Usage:
    uvicorn --factory section_video.server:create_app --port 8000
    section-video serve --port 8000
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .api.outputs import LocalOutputStorage
from .core.config import Config
from .core.exceptions import (
    CompilationError,
    ConfigurationError,
    DispatchRejected,
    EmptySetError,
    InvalidStateTransition,
    ProviderError,
    ResourceNotFoundError,
    SectionVideoError,
    SecurityError,
    ValidationError,
)
from .workflow.pipeline import SectionPipeline

logger = logging.getLogger(__name__)

# First match wins, so subclasses come before their bases
ERROR_STATUS_CODES = [
    (SecurityError, 401),
    (ValidationError, 400),
    (EmptySetError, 400),
    (ResourceNotFoundError, 404),
    (InvalidStateTransition, 409),
    (DispatchRejected, 502),
    (CompilationError, 502),
    (ProviderError, 502),
    (ConfigurationError, 500),
]


def status_code_for(error: SectionVideoError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


# =============================================================================
# Request Models
# =============================================================================


class CreateSectionRequest(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    content: str
    target_duration: float = Field(..., gt=0)
    language: str
    project_id: Optional[str] = None


class SegmentRequest(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    total_duration: float = Field(..., gt=0)
    language: str
    model_id: str


class DispatchRequest(BaseModel):
    overrides: Optional[Dict[str, Any]] = None


class RegenerateRequest(BaseModel):
    new_seed: Optional[int] = Field(None, ge=0)
    reference_image_url: Optional[str] = None


class CompileRequestBody(BaseModel):
    output_format: str = "mp4"
    quality: str = "high"


# =============================================================================
# Application
# =============================================================================


def get_pipeline(request: Request) -> SectionPipeline:
    return request.app.state.pipeline


def create_app(config: Optional[Config] = None, pipeline: Optional[SectionPipeline] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Loaded configuration (``Config.load()`` if omitted)
        pipeline: Pre-built pipeline, mainly for tests
    """
    pipeline = pipeline or SectionPipeline(config or Config.load())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Section video server starting up")
        yield
        logger.info("Section video server shutting down")
        await app.state.pipeline.close()

    app = FastAPI(
        title="Section Video Pipeline",
        description="Segment, generate, review, and compile AI video sections",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    if isinstance(pipeline.output_storage, LocalOutputStorage):
        app.mount("/media", StaticFiles(directory=pipeline.output_storage.directory), name="media")

    @app.exception_handler(SectionVideoError)
    async def handle_pipeline_error(request: Request, exc: SectionVideoError):
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status_code, content={"success": False, **exc.to_dict()})

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    @app.get("/health")
    def health(pipeline: SectionPipeline = Depends(get_pipeline)):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "models": pipeline.registry.list_models(),
            "webhook_secret_configured": bool(pipeline.config.webhook.secret),
            "provider_configured": bool(pipeline.provider.api_key),
        }

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    @app.post("/api/sections", status_code=201)
    def create_section(body: CreateSectionRequest, pipeline: SectionPipeline = Depends(get_pipeline)):
        section = pipeline.create_section(body.content, body.target_duration, body.language, body.project_id)
        return {"success": True, "section": section.to_dict()}

    @app.get("/api/sections/{section_id}")
    def get_section(section_id: str, pipeline: SectionPipeline = Depends(get_pipeline)):
        return {"success": True, "section": pipeline.get_section(section_id)}

    @app.post("/api/sections/{section_id}/segment")
    def segment_section(section_id: str, body: SegmentRequest, pipeline: SectionPipeline = Depends(get_pipeline)):
        units = pipeline.segment(section_id, body.total_duration, body.language, body.model_id)
        return {
            "success": True,
            "section_id": section_id,
            "unit_count": len(units),
            "units": [u.to_dict() for u in units],
        }

    @app.post("/api/sections/{section_id}/dispatch-next")
    async def dispatch_next(
        section_id: str,
        body: Optional[DispatchRequest] = None,
        pipeline: SectionPipeline = Depends(get_pipeline),
    ):
        receipt = await pipeline.dispatch_next(section_id, body.overrides if body else None)
        return {"success": True, **receipt.to_dict()}

    @app.post("/api/sections/{section_id}/compile")
    async def compile_section(
        section_id: str,
        body: Optional[CompileRequestBody] = None,
        pipeline: SectionPipeline = Depends(get_pipeline),
    ):
        body = body or CompileRequestBody()
        artifact = await pipeline.compile(section_id, output_format=body.output_format, quality=body.quality)
        return {"success": True, "artifact": artifact.to_dict()}

    # -------------------------------------------------------------------------
    # Units
    # -------------------------------------------------------------------------

    @app.post("/api/units/{unit_id}/dispatch")
    async def dispatch_unit(
        unit_id: str,
        body: Optional[DispatchRequest] = None,
        pipeline: SectionPipeline = Depends(get_pipeline),
    ):
        receipt = await pipeline.dispatch(unit_id, body.overrides if body else None)
        return {"success": True, **receipt.to_dict()}

    @app.get("/api/units/{unit_id}/status")
    def unit_status(unit_id: str, pipeline: SectionPipeline = Depends(get_pipeline)):
        return {"success": True, "unit": pipeline.get_unit_status(unit_id)}

    @app.post("/api/units/{unit_id}/approve")
    def approve_unit(unit_id: str, pipeline: SectionPipeline = Depends(get_pipeline)):
        unit = pipeline.approve(unit_id)
        return {"success": True, "unit": unit.to_dict()}

    @app.post("/api/units/{unit_id}/regenerate")
    def regenerate_unit(
        unit_id: str,
        body: Optional[RegenerateRequest] = None,
        pipeline: SectionPipeline = Depends(get_pipeline),
    ):
        body = body or RegenerateRequest()
        unit = pipeline.regenerate(unit_id, new_seed=body.new_seed, reference_image_url=body.reference_image_url)
        return {"success": True, "unit": unit.to_dict()}

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    @app.post("/api/webhooks/replicate")
    async def replicate_webhook(request: Request):
        body = await request.body()
        # Verification, output persistence, and the guarded writes are all blocking
        outcome = await asyncio.to_thread(request.app.state.pipeline.handle_webhook, request.headers, body)
        return JSONResponse(status_code=outcome.status_code, content=outcome.body)

    @app.get("/api/webhooks/replicate/test")
    def replicate_webhook_test(pipeline: SectionPipeline = Depends(get_pipeline)):
        return {
            "success": True,
            "message": "Webhook endpoint is reachable",
            "secret_configured": bool(pipeline.config.webhook.secret),
        }

    return app

