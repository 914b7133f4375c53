"""
Pipeline Models
===============

Core data models for sections, video units, generation jobs, and compiled
artifacts.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UnitStatus(Enum):
    """Status of a video unit."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    APPROVED = "approved"


class JobStatus(Enum):
    """Status of a generation job."""

    DISPATCHED = "dispatched"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


# Statuses a webhook is still allowed to move forward
IN_FLIGHT_STATUSES = ("dispatched", "generating")

# Statuses from which a unit may be (re)dispatched
DISPATCHABLE_STATUSES = ("pending", "failed")

# Statuses after which the next unit in a section may be dispatched
SETTLED_STATUSES = ("completed", "approved", "failed", "canceled")

# Statuses whose thumbnail may seed the next unit
CHAINABLE_STATUSES = ("completed", "approved")


@dataclass
class Section:
    """A script section that is turned into a sequence of units."""

    content: str
    target_duration: float
    language: str
    project_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    base_seed: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class VideoUnit:
    """
    One short, ordered video generation request within a section.

    Units are the atomic unit of generation: each produces one clip, and
    approved clips are concatenated in ``order``.
    """

    section_id: str
    order: int
    start_time: float
    end_time: float
    duration: float
    model_id: str
    seed: Optional[int] = None

    # Narrative
    objective: str = ""
    voiceover_text: str = ""
    visual_description: str = ""
    optimized_prompt: Optional[str] = None

    # Continuity
    reference_image_url: Optional[str] = None

    # Results
    status: UnitStatus = UnitStatus.PENDING
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    actual_cost: Optional[float] = None

    # Tracking
    correlation_id: Optional[str] = None
    current_job_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def prompt(self) -> str:
        """Prompt sent to the provider."""
        return self.optimized_prompt or self.visual_description

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass
class GenerationJob:
    """One dispatch attempt of a unit to the generation provider."""

    model_id: str
    parameters: Dict[str, Any]
    unit_id: Optional[str] = None
    status: JobStatus = JobStatus.DISPATCHED
    correlation_id: Optional[str] = None
    error: Optional[str] = None
    result_url: Optional[str] = None
    output: Optional[Any] = None
    metrics: Optional[Dict[str, Any]] = None
    estimated_cost: Optional[float] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data


@dataclass
class CompiledArtifact:
    """The concatenation of a section's approved units."""

    section_id: str
    ordered_unit_ids: List[str]
    output_url: str
    duration: float
    file_size: Optional[int] = None
    output_format: str = "mp4"
    quality: str = "high"
    id: str = field(default_factory=new_id)
    compiled_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["compiled_at"] = self.compiled_at.isoformat()
        return data
