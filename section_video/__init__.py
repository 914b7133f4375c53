"""
Section Video Pipeline
======================

Turns a script section into short AI-generated clips, tracks their
asynchronous generation through provider webhooks, gates them on manual
approval, and compiles the approved clips into one video.

Features:
- Segmentation into fixed-length units with contiguous seeds
- Visual continuity by chaining each unit from the previous thumbnail
- Replicate dispatch with typed, whitelisted per-model parameters
- Signed, idempotent webhook reconciliation
- Compilation through a compile service or local ffmpeg

Quick Start:
    from section_video import Config, SectionPipeline

    pipeline = SectionPipeline(Config.load())
    section = pipeline.create_section(script_text, 30, "en")
    pipeline.segment(section.id, 30, "en", "kling-v2.1")
    receipt = await pipeline.dispatch_next(section.id)
"""

__version__ = "0.3.0"
__author__ = "AI Video Series Producer"

# Core Utilities
from .core.config import Config
from .core.models import ModelRegistry, ModelProfile
from .core.exceptions import (
    SectionVideoError,
    ConfigurationError,
    ValidationError,
    ProviderError,
    DispatchRejected,
    WebhookAuthError,
    InvalidStateTransition,
    EmptySetError,
    CompilationError,
)

# Storage
from .storage import UnitStore, Section, VideoUnit, GenerationJob, CompiledArtifact, UnitStatus, JobStatus

# Workflow
from .workflow import (
    SectionPipeline,
    ScriptSegmenter,
    GenerationDispatcher,
    WebhookReconciler,
    ApprovalGate,
    SectionCompiler,
)

# Providers
from .api import get_provider, list_providers

__all__ = [
    # Version
    "__version__",

    # Core
    "Config",
    "ModelRegistry",
    "ModelProfile",

    # Exceptions
    "SectionVideoError",
    "ConfigurationError",
    "ValidationError",
    "ProviderError",
    "DispatchRejected",
    "WebhookAuthError",
    "InvalidStateTransition",
    "EmptySetError",
    "CompilationError",

    # Storage
    "UnitStore",
    "Section",
    "VideoUnit",
    "GenerationJob",
    "CompiledArtifact",
    "UnitStatus",
    "JobStatus",

    # Workflow
    "SectionPipeline",
    "ScriptSegmenter",
    "GenerationDispatcher",
    "WebhookReconciler",
    "ApprovalGate",
    "SectionCompiler",

    # Providers
    "get_provider",
    "list_providers",
]
