"""
Section Pipeline
================

Wires the store, model registry, providers, and workflow stages together
from one loaded Config. The HTTP server and the CLI both drive the
pipeline through this class.
"""

import logging
import math
from typing import Optional, List, Dict, Any

from ..api.base import BaseGenerationProvider, BaseConcatenationProvider
from ..api.factory import get_provider, get_concatenation_provider, get_output_storage
from ..api.outputs import BaseOutputStorage
from ..core.config import Config
from ..core.exceptions import ResourceNotFoundError, ValidationError
from ..core.models import ModelRegistry
from ..storage import UnitStore, Section, VideoUnit, CompiledArtifact
from .approval import ApprovalGate
from .compiler import SectionCompiler
from .continuity import ContinuityResolver
from .dispatcher import GenerationDispatcher, DispatchReceipt
from .reconciler import WebhookReconciler, WebhookOutcome
from .segmenter import ScriptSegmenter, ScriptWriter

logger = logging.getLogger(__name__)


class SectionPipeline:
    """
    Main entry point for producing a section video.

    Usage:
        pipeline = SectionPipeline(Config.load())
        section = pipeline.create_section(content, 30, "en")
        pipeline.segment(section.id, 30, "en", "kling-v2.1")
        await pipeline.dispatch_next(section.id)
        ...
        await pipeline.close()
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[UnitStore] = None,
        registry: Optional[ModelRegistry] = None,
        provider: Optional[BaseGenerationProvider] = None,
        concatenator: Optional[BaseConcatenationProvider] = None,
        writer: Optional[ScriptWriter] = None,
        output_storage: Optional[BaseOutputStorage] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Loaded configuration (defaults if omitted)
            store: Unit store (created from ``config.storage`` if omitted)
            registry: Model registry (built from ``config.models`` if omitted)
            provider: Generation provider (from ``config.generation`` if omitted)
            concatenator: Concatenation provider (from ``config.compilation`` if omitted)
            writer: Script writer used by the segmenter
            output_storage: Output copies (from ``config.outputs`` if omitted)
        """
        self.config = config or Config()

        self.store = store or UnitStore(self.config.storage.database_path)
        self.registry = registry or ModelRegistry.from_dict(self.config.models)

        generation = self.config.generation
        self.provider = provider or get_provider(
            generation.provider,
            api_key=generation.api_token,
            base_url=generation.base_url,
            timeout=generation.acceptance_timeout,
            webhook_events=generation.webhook_events,
        )

        compilation = self.config.compilation
        if concatenator is None:
            if compilation.provider == "ffmpeg":
                concatenator = get_concatenation_provider(
                    "ffmpeg", output_path=compilation.output_path, timeout=compilation.timeout
                )
            else:
                concatenator = get_concatenation_provider(
                    "http",
                    api_key=compilation.api_token,
                    base_url=compilation.base_url,
                    timeout=compilation.timeout,
                )
        self.concatenator = concatenator

        outputs = self.config.outputs
        self.output_storage = output_storage or get_output_storage(
            outputs.backend,
            directory=outputs.directory,
            public_base_url=outputs.public_base_url,
            timeout=outputs.timeout,
        )

        self.continuity = ContinuityResolver(self.store, enabled=self.config.chaining.enabled)
        self.segmenter = ScriptSegmenter(
            self.store,
            self.registry,
            languages=self.config.segmentation.languages,
            writer=writer,
            max_units=self.config.segmentation.max_units,
        )
        self.dispatcher = GenerationDispatcher(
            self.store,
            self.registry,
            self.provider,
            self.continuity,
            webhook_url=generation.webhook_url,
            acceptance_timeout=generation.acceptance_timeout,
            sequential=self.config.chaining.sequential_dispatch,
        )
        self.reconciler = WebhookReconciler(
            self.store,
            self.registry,
            secret=self.config.webhook.secret,
            tolerance_seconds=self.config.webhook.tolerance_seconds,
            output_storage=self.output_storage,
        )
        self.approval = ApprovalGate(self.store)
        self.compiler = SectionCompiler(
            self.store,
            self.concatenator,
            output_formats=compilation.output_formats,
            qualities=compilation.qualities,
        )

        logger.info("SectionPipeline initialized")
        logger.info(f"  Database: {self.store.db_path}")
        logger.info(f"  Output storage: {self.output_storage.provider_name}")
        logger.info(f"  Models: {', '.join(self.registry.list_models())}")

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    def create_section(
        self,
        content: str,
        target_duration: float,
        language: str,
        project_id: Optional[str] = None,
    ) -> Section:
        if not content or not content.strip():
            raise ValidationError("Section content is empty", field="content")
        if language not in self.config.segmentation.languages:
            raise ValidationError(
                f"Unsupported language: {language}",
                field="language",
                value=language,
                constraint=f"one of {self.config.segmentation.languages}",
            )
        if not math.isfinite(target_duration) or target_duration <= 0:
            raise ValidationError("Target duration must be a positive finite number", field="target_duration", value=target_duration)

        return self.store.create_section(
            Section(content=content, target_duration=target_duration, language=language, project_id=project_id)
        )

    def get_section(self, section_id: str) -> Dict[str, Any]:
        """Section with its units in order and its compilation history."""
        section = self.store.get_section(section_id)
        if section is None:
            raise ResourceNotFoundError(
                f"Section not found: {section_id}",
                resource_type="section",
                resource_id=section_id,
            )
        units = self.store.list_units(section_id)
        return {
            **section.to_dict(),
            "units": [u.to_dict() for u in units],
            "artifacts": [a.to_dict() for a in self.store.list_artifacts(section_id)],
        }

    def segment(
        self,
        section_id: str,
        total_duration: float,
        language: str,
        model_id: str,
    ) -> List[VideoUnit]:
        return self.segmenter.segment(section_id, total_duration, language, model_id)

    # -------------------------------------------------------------------------
    # Units
    # -------------------------------------------------------------------------

    async def dispatch(self, unit_id: str, overrides: Optional[Dict[str, Any]] = None) -> DispatchReceipt:
        return await self.dispatcher.dispatch(unit_id, overrides)

    async def dispatch_next(self, section_id: str, overrides: Optional[Dict[str, Any]] = None) -> DispatchReceipt:
        return await self.dispatcher.dispatch_next(section_id, overrides)

    def get_unit_status(self, unit_id: str) -> Dict[str, Any]:
        """Unit state plus its current generation job, if any."""
        unit = self.store.get_unit(unit_id)
        if unit is None:
            raise ResourceNotFoundError(f"Unit not found: {unit_id}", resource_type="unit", resource_id=unit_id)
        job = self.store.get_job(unit.current_job_id) if unit.current_job_id else None
        return {**unit.to_dict(), "job": job.to_dict() if job else None}

    def approve(self, unit_id: str) -> VideoUnit:
        return self.approval.approve(unit_id)

    def regenerate(
        self,
        unit_id: str,
        new_seed: Optional[int] = None,
        reference_image_url: Optional[str] = None,
    ) -> VideoUnit:
        return self.approval.regenerate(unit_id, new_seed=new_seed, reference_image_url=reference_image_url)

    # -------------------------------------------------------------------------
    # Webhooks and compilation
    # -------------------------------------------------------------------------

    def handle_webhook(self, headers, body) -> WebhookOutcome:
        return self.reconciler.handle(headers, body)

    async def compile(self, section_id: str, output_format: str = "mp4", quality: str = "high") -> CompiledArtifact:
        return await self.compiler.compile(section_id, output_format=output_format, quality=quality)

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close provider connections."""
        await self.provider.close()
        await self.concatenator.close()
        self.output_storage.close()
