"""
Unit Store
==========

SQLite persistence for sections, units, generation jobs, and compiled
artifacts.

Every status change that can race with another writer is expressed as a
conditional UPDATE (``WHERE status IN (...)``) inside an immediate
transaction, so duplicate or reordered webhook deliveries and concurrent
dispatches resolve to exactly one winner without external locking.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterator, Sequence, Union

from .models import (
    Section,
    VideoUnit,
    GenerationJob,
    CompiledArtifact,
    UnitStatus,
    JobStatus,
    IN_FLIGHT_STATUSES,
    DISPATCHABLE_STATUSES,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class TerminalUpdate:
    """A terminal provider outcome to apply to a job and its unit."""

    job_status: JobStatus
    unit_status: UnitStatus
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None
    output: Optional[Any] = None
    metrics: Optional[Dict[str, Any]] = None
    processing_time_ms: Optional[int] = None
    actual_cost: Optional[float] = None


@dataclass
class TerminalApplyResult:
    job_updated: bool
    unit_updated: bool


_SCHEMA = """
CREATE TABLE IF NOT EXISTS sections (
    id TEXT PRIMARY KEY,
    project_id TEXT,
    content TEXT NOT NULL,
    target_duration REAL NOT NULL,
    language TEXT NOT NULL,
    base_seed INTEGER,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS video_units (
    id TEXT PRIMARY KEY,
    section_id TEXT NOT NULL REFERENCES sections(id),
    unit_order INTEGER NOT NULL,
    start_time REAL NOT NULL,
    end_time REAL NOT NULL,
    duration REAL NOT NULL,
    model_id TEXT NOT NULL,
    seed INTEGER,
    objective TEXT,
    voiceover_text TEXT,
    visual_description TEXT,
    optimized_prompt TEXT,
    reference_image_url TEXT,
    status TEXT NOT NULL,
    result_url TEXT,
    thumbnail_url TEXT,
    error_message TEXT,
    processing_time_ms INTEGER,
    actual_cost REAL,
    correlation_id TEXT,
    current_job_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (section_id, unit_order)
);

CREATE TABLE IF NOT EXISTS generation_jobs (
    id TEXT PRIMARY KEY,
    correlation_id TEXT UNIQUE,
    unit_id TEXT,
    model_id TEXT NOT NULL,
    status TEXT NOT NULL,
    parameters TEXT NOT NULL,
    error TEXT,
    result_url TEXT,
    output TEXT,
    metrics TEXT,
    estimated_cost REAL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS compiled_artifacts (
    id TEXT PRIMARY KEY,
    section_id TEXT NOT NULL,
    ordered_unit_ids TEXT NOT NULL,
    output_url TEXT NOT NULL,
    file_size INTEGER,
    duration REAL NOT NULL,
    output_format TEXT NOT NULL,
    quality TEXT NOT NULL,
    compiled_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_units_section ON video_units(section_id);
CREATE INDEX IF NOT EXISTS idx_units_status ON video_units(status);
CREATE INDEX IF NOT EXISTS idx_jobs_unit ON generation_jobs(unit_id);
CREATE INDEX IF NOT EXISTS idx_artifacts_section ON compiled_artifacts(section_id);
"""

_TABLES = ("sections", "video_units", "generation_jobs", "compiled_artifacts")


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dumps(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value is not None else None


class UnitStore:
    """
    SQLite-backed store for the generation pipeline.

    Provides:
    - Section and unit persistence
    - Full replacement of a section's units on re-segmentation
    - Status-guarded transitions for dispatch, webhooks, and approval
    - Compiled artifact history
    """

    def __init__(self, db_path: Union[str, Path] = "data/section_video.db"):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Initialized unit store database at {self.db_path}")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a connection holding the write lock for the whole block."""
        conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    def create_section(self, section: Section) -> Section:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO sections (id, project_id, content, target_duration, language, base_seed, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    section.id,
                    section.project_id,
                    section.content,
                    section.target_duration,
                    section.language,
                    section.base_seed,
                    _ts(section.created_at),
                ),
            )
        logger.info(f"Created section {section.id}")
        return section

    def get_section(self, section_id: str) -> Optional[Section]:
        with self._reader() as conn:
            row = conn.execute("SELECT * FROM sections WHERE id = ?", (section_id,)).fetchone()
        return self._row_to_section(row) if row else None

    # -------------------------------------------------------------------------
    # Units
    # -------------------------------------------------------------------------

    def replace_units(
        self,
        section_id: str,
        units: List[VideoUnit],
        target_duration: float,
        language: str,
        base_seed: int,
    ) -> int:
        """
        Delete every unit and job of a section and insert ``units`` instead.

        Segmentation is never incremental: this is the only way units are
        created, and it always overwrites the full set.

        Returns:
            Number of units that were replaced
        """
        with self._transaction() as conn:
            previous = conn.execute(
                "SELECT COUNT(*) FROM video_units WHERE section_id = ?", (section_id,)
            ).fetchone()[0]

            conn.execute(
                "DELETE FROM generation_jobs WHERE unit_id IN (SELECT id FROM video_units WHERE section_id = ?)",
                (section_id,),
            )
            conn.execute("DELETE FROM video_units WHERE section_id = ?", (section_id,))
            conn.execute(
                "UPDATE sections SET target_duration = ?, language = ?, base_seed = ? WHERE id = ?",
                (target_duration, language, base_seed, section_id),
            )

            for unit in units:
                conn.execute(
                    """
                    INSERT INTO video_units (
                        id, section_id, unit_order, start_time, end_time, duration, model_id, seed,
                        objective, voiceover_text, visual_description, optimized_prompt,
                        reference_image_url, status, result_url, thumbnail_url, error_message,
                        processing_time_ms, actual_cost, correlation_id, current_job_id,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        unit.id,
                        unit.section_id,
                        unit.order,
                        unit.start_time,
                        unit.end_time,
                        unit.duration,
                        unit.model_id,
                        unit.seed,
                        unit.objective,
                        unit.voiceover_text,
                        unit.visual_description,
                        unit.optimized_prompt,
                        unit.reference_image_url,
                        unit.status.value,
                        unit.result_url,
                        unit.thumbnail_url,
                        unit.error_message,
                        unit.processing_time_ms,
                        unit.actual_cost,
                        unit.correlation_id,
                        unit.current_job_id,
                        _ts(unit.created_at),
                        _ts(unit.updated_at),
                    ),
                )

        if previous:
            logger.info(f"Replaced {previous} units of section {section_id} with {len(units)} new units")
        return previous

    def get_unit(self, unit_id: str) -> Optional[VideoUnit]:
        with self._reader() as conn:
            row = conn.execute("SELECT * FROM video_units WHERE id = ?", (unit_id,)).fetchone()
        return self._row_to_unit(row) if row else None

    def get_unit_by_order(self, section_id: str, order: int) -> Optional[VideoUnit]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM video_units WHERE section_id = ? AND unit_order = ?",
                (section_id, order),
            ).fetchone()
        return self._row_to_unit(row) if row else None

    def list_units(self, section_id: str) -> List[VideoUnit]:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT * FROM video_units WHERE section_id = ? ORDER BY unit_order ASC",
                (section_id,),
            ).fetchall()
        return [self._row_to_unit(r) for r in rows]

    def list_approved_units(self, section_id: str) -> List[VideoUnit]:
        """Approved units with a result, in ascending order."""
        with self._reader() as conn:
            rows = conn.execute(
                """
                SELECT * FROM video_units
                WHERE section_id = ? AND status = ? AND result_url IS NOT NULL
                ORDER BY unit_order ASC
                """,
                (section_id, UnitStatus.APPROVED.value),
            ).fetchall()
        return [self._row_to_unit(r) for r in rows]

    def find_units_with_reference(self, section_id: str, reference_image_url: str) -> List[VideoUnit]:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT * FROM video_units WHERE section_id = ? AND reference_image_url = ? ORDER BY unit_order",
                (section_id, reference_image_url),
            ).fetchall()
        return [self._row_to_unit(r) for r in rows]

    def set_reference_image(self, unit_id: str, reference_image_url: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE video_units SET reference_image_url = ?, updated_at = ? WHERE id = ?",
                (reference_image_url, _ts(utcnow()), unit_id),
            )

    def transition_unit(
        self,
        unit_id: str,
        from_statuses: Sequence[str],
        to_status: UnitStatus,
    ) -> bool:
        """Move a unit to ``to_status`` only if it is currently in ``from_statuses``."""
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE video_units SET status = ?, updated_at = ?
                WHERE id = ? AND status IN ({_placeholders(from_statuses)})
                """,
                (to_status.value, _ts(utcnow()), unit_id, *from_statuses),
            )
            return cursor.rowcount == 1

    def reset_unit(
        self,
        unit_id: str,
        seed: Optional[int] = None,
        reference_image_url: Optional[str] = None,
    ) -> bool:
        """Return a unit to pending and clear its previous outcome."""
        assignments = [
            "status = ?",
            "error_message = NULL",
            "result_url = NULL",
            "thumbnail_url = NULL",
            "processing_time_ms = NULL",
            "actual_cost = NULL",
            "correlation_id = NULL",
            "current_job_id = NULL",
            "updated_at = ?",
        ]
        params: List[Any] = [UnitStatus.PENDING.value, _ts(utcnow())]

        if seed is not None:
            assignments.append("seed = ?")
            params.append(seed)
        if reference_image_url is not None:
            assignments.append("reference_image_url = ?")
            params.append(reference_image_url)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE video_units SET {', '.join(assignments)} WHERE id = ?",
                (*params, unit_id),
            )
            return cursor.rowcount == 1

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def claim_for_dispatch(self, unit_id: str) -> bool:
        """Atomically move a pending/failed unit to dispatched."""
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE video_units SET status = ?, error_message = NULL, updated_at = ?
                WHERE id = ? AND status IN ({_placeholders(DISPATCHABLE_STATUSES)})
                """,
                (UnitStatus.DISPATCHED.value, _ts(utcnow()), unit_id, *DISPATCHABLE_STATUSES),
            )
            return cursor.rowcount == 1

    def create_job(self, job: GenerationJob) -> GenerationJob:
        """Insert a job and make it the unit's current job."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO generation_jobs (
                    id, correlation_id, unit_id, model_id, status, parameters, error, result_url,
                    output, metrics, estimated_cost, created_at, updated_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.correlation_id,
                    job.unit_id,
                    job.model_id,
                    job.status.value,
                    json.dumps(job.parameters),
                    job.error,
                    job.result_url,
                    _dumps(job.output),
                    _dumps(job.metrics),
                    job.estimated_cost,
                    _ts(job.created_at),
                    _ts(job.updated_at),
                    _ts(job.completed_at),
                ),
            )
            if job.unit_id:
                conn.execute(
                    "UPDATE video_units SET current_job_id = ?, updated_at = ? WHERE id = ?",
                    (job.id, _ts(utcnow()), job.unit_id),
                )
        return job

    def mark_dispatch_accepted(
        self,
        job_id: str,
        unit_id: str,
        correlation_id: str,
        estimated_cost: Optional[float] = None,
    ) -> None:
        now = _ts(utcnow())
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE generation_jobs SET status = ?, correlation_id = ?, estimated_cost = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (JobStatus.GENERATING.value, correlation_id, estimated_cost, now, job_id, JobStatus.DISPATCHED.value),
            )
            conn.execute(
                """
                UPDATE video_units SET status = ?, correlation_id = ?, updated_at = ?
                WHERE id = ? AND status = ? AND current_job_id = ?
                """,
                (UnitStatus.GENERATING.value, correlation_id, now, unit_id, UnitStatus.DISPATCHED.value, job_id),
            )

    def mark_dispatch_failed(self, job_id: str, unit_id: str, message: str) -> None:
        now = _ts(utcnow())
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE generation_jobs SET status = ?, error = ?, updated_at = ?, completed_at = ?
                WHERE id = ? AND status = ?
                """,
                (JobStatus.FAILED.value, message, now, now, job_id, JobStatus.DISPATCHED.value),
            )
            conn.execute(
                """
                UPDATE video_units SET status = ?, error_message = ?, updated_at = ?
                WHERE id = ? AND status = ? AND current_job_id = ?
                """,
                (UnitStatus.FAILED.value, message, now, unit_id, UnitStatus.DISPATCHED.value, job_id),
            )

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[GenerationJob]:
        with self._reader() as conn:
            row = conn.execute("SELECT * FROM generation_jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def get_job_by_correlation_id(self, correlation_id: str) -> Optional[GenerationJob]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM generation_jobs WHERE correlation_id = ?", (correlation_id,)
            ).fetchone()
        return self._row_to_job(row) if row else None

    def apply_terminal_update(self, job: GenerationJob, update: TerminalUpdate) -> TerminalApplyResult:
        """
        Apply a terminal outcome to a job and its linked unit in one transaction.

        Both writes are guarded by an in-flight status condition. If the job is
        already terminal nothing is written; the unit is only touched while it
        is still in flight on this same job.
        """
        now = _ts(utcnow())
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE generation_jobs
                SET status = ?, result_url = ?, error = ?, output = ?, metrics = ?,
                    updated_at = ?, completed_at = ?
                WHERE id = ? AND status IN ({_placeholders(IN_FLIGHT_STATUSES)})
                """,
                (
                    update.job_status.value,
                    update.result_url,
                    update.error,
                    _dumps(update.output),
                    _dumps(update.metrics),
                    now,
                    now,
                    job.id,
                    *IN_FLIGHT_STATUSES,
                ),
            )
            if cursor.rowcount == 0:
                return TerminalApplyResult(job_updated=False, unit_updated=False)

            if not job.unit_id:
                return TerminalApplyResult(job_updated=True, unit_updated=False)

            cursor = conn.execute(
                f"""
                UPDATE video_units
                SET status = ?, result_url = ?, thumbnail_url = ?, error_message = ?,
                    processing_time_ms = ?, actual_cost = ?, updated_at = ?
                WHERE id = ? AND current_job_id = ? AND status IN ({_placeholders(IN_FLIGHT_STATUSES)})
                """,
                (
                    update.unit_status.value,
                    update.result_url,
                    update.thumbnail_url,
                    update.error,
                    update.processing_time_ms,
                    update.actual_cost,
                    now,
                    job.unit_id,
                    job.id,
                    *IN_FLIGHT_STATUSES,
                ),
            )
            return TerminalApplyResult(job_updated=True, unit_updated=cursor.rowcount == 1)

    # -------------------------------------------------------------------------
    # Compiled artifacts
    # -------------------------------------------------------------------------

    def save_artifact(self, artifact: CompiledArtifact) -> CompiledArtifact:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO compiled_artifacts (
                    id, section_id, ordered_unit_ids, output_url, file_size, duration,
                    output_format, quality, compiled_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    artifact.id,
                    artifact.section_id,
                    json.dumps(artifact.ordered_unit_ids),
                    artifact.output_url,
                    artifact.file_size,
                    artifact.duration,
                    artifact.output_format,
                    artifact.quality,
                    _ts(artifact.compiled_at),
                ),
            )
        return artifact

    def list_artifacts(self, section_id: str) -> List[CompiledArtifact]:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT * FROM compiled_artifacts WHERE section_id = ? ORDER BY compiled_at DESC",
                (section_id,),
            ).fetchall()
        return [self._row_to_artifact(r) for r in rows]

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def count_rows(self) -> Dict[str, int]:
        with self._reader() as conn:
            return {table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] for table in _TABLES}

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_section(row: sqlite3.Row) -> Section:
        return Section(
            id=row["id"],
            project_id=row["project_id"],
            content=row["content"],
            target_duration=row["target_duration"],
            language=row["language"],
            base_seed=row["base_seed"],
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_unit(row: sqlite3.Row) -> VideoUnit:
        return VideoUnit(
            id=row["id"],
            section_id=row["section_id"],
            order=row["unit_order"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            duration=row["duration"],
            model_id=row["model_id"],
            seed=row["seed"],
            objective=row["objective"] or "",
            voiceover_text=row["voiceover_text"] or "",
            visual_description=row["visual_description"] or "",
            optimized_prompt=row["optimized_prompt"],
            reference_image_url=row["reference_image_url"],
            status=UnitStatus(row["status"]),
            result_url=row["result_url"],
            thumbnail_url=row["thumbnail_url"],
            error_message=row["error_message"],
            processing_time_ms=row["processing_time_ms"],
            actual_cost=row["actual_cost"],
            correlation_id=row["correlation_id"],
            current_job_id=row["current_job_id"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> GenerationJob:
        return GenerationJob(
            id=row["id"],
            correlation_id=row["correlation_id"],
            unit_id=row["unit_id"],
            model_id=row["model_id"],
            status=JobStatus(row["status"]),
            parameters=json.loads(row["parameters"]),
            error=row["error"],
            result_url=row["result_url"],
            output=_loads(row["output"]),
            metrics=_loads(row["metrics"]),
            estimated_cost=row["estimated_cost"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            completed_at=_parse_ts(row["completed_at"]),
        )

    @staticmethod
    def _row_to_artifact(row: sqlite3.Row) -> CompiledArtifact:
        return CompiledArtifact(
            id=row["id"],
            section_id=row["section_id"],
            ordered_unit_ids=json.loads(row["ordered_unit_ids"]),
            output_url=row["output_url"],
            file_size=row["file_size"],
            duration=row["duration"],
            output_format=row["output_format"],
            quality=row["quality"],
            compiled_at=_parse_ts(row["compiled_at"]),
        )
