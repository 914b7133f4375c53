"""
Section Compiler
================

Concatenates the approved units of a section into one video.
"""

import asyncio
import logging
from typing import List

from ..api.base import BaseConcatenationProvider, CompileRequest
from ..core.exceptions import CompilationError, EmptySetError, ProviderError, ResourceNotFoundError, ValidationError
from ..storage import UnitStore, CompiledArtifact

logger = logging.getLogger(__name__)


class SectionCompiler:
    """
    Compiles approved units in ascending order.

    Units that are not approved, or that have no result URL, are left out.
    """

    def __init__(
        self,
        store: UnitStore,
        provider: BaseConcatenationProvider,
        output_formats: List[str],
        qualities: List[str],
    ):
        self.store = store
        self.provider = provider
        self.output_formats = list(output_formats)
        self.qualities = list(qualities)

    async def compile(
        self,
        section_id: str,
        output_format: str = "mp4",
        quality: str = "high",
    ) -> CompiledArtifact:
        """
        Compile a section.

        Returns:
            The persisted CompiledArtifact

        Raises:
            ValidationError: On an unsupported format or quality
            EmptySetError: If no unit is approved
            CompilationError: If the concatenation provider fails
        """
        if output_format not in self.output_formats:
            raise ValidationError(
                f"Unsupported output format: {output_format}",
                field="output_format",
                value=output_format,
                constraint=f"one of {self.output_formats}",
            )
        if quality not in self.qualities:
            raise ValidationError(
                f"Unsupported quality: {quality}",
                field="quality",
                value=quality,
                constraint=f"one of {self.qualities}",
            )

        if await asyncio.to_thread(self.store.get_section, section_id) is None:
            raise ResourceNotFoundError(
                f"Section not found: {section_id}",
                resource_type="section",
                resource_id=section_id,
            )

        units = await asyncio.to_thread(self.store.list_approved_units, section_id)
        if not units:
            raise EmptySetError(f"No approved units to compile for section {section_id}", section_id=section_id)

        estimated_duration = sum(u.duration for u in units)
        request = CompileRequest(
            ordered_urls=[u.result_url for u in units],
            output_format=output_format,
            quality=quality,
            section_id=section_id,
        )

        logger.info(f"Compiling {len(units)} units of section {section_id} ({estimated_duration}s, {output_format}/{quality})")

        try:
            result = await self.provider.compile(request)
        except ProviderError as e:
            logger.error(f"Compilation of section {section_id} failed: {e.message}")
            raise CompilationError(
                f"Compilation failed: {e.message}",
                section_id=section_id,
                unit_count=len(units),
                recoverable=e.recoverable,
            ) from e

        artifact = await asyncio.to_thread(
            self.store.save_artifact,
            CompiledArtifact(
                section_id=section_id,
                ordered_unit_ids=[u.id for u in units],
                output_url=result.compiled_url,
                duration=result.duration if result.duration is not None else estimated_duration,
                file_size=result.file_size,
                output_format=output_format,
                quality=quality,
            ),
        )

        logger.info(f"Compiled section {section_id} to {artifact.output_url}")
        return artifact
