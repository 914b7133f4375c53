"""
Storage
=======

Persistence for the generation pipeline.

Components:
- UnitStore: SQLite store with status-guarded transitions
- Section, VideoUnit, GenerationJob, CompiledArtifact: data models
"""

from .models import (
    Section,
    VideoUnit,
    GenerationJob,
    CompiledArtifact,
    UnitStatus,
    JobStatus,
)
from .store import UnitStore, TerminalUpdate, TerminalApplyResult

__all__ = [
    "UnitStore",
    "TerminalUpdate",
    "TerminalApplyResult",
    "Section",
    "VideoUnit",
    "GenerationJob",
    "CompiledArtifact",
    "UnitStatus",
    "JobStatus",
]
