"""
Script Segmenter
================

Breaks a section into ordered, fixed-length video units.

The unit count is driven by the model's maximum clip length; durations are
split as evenly as whole seconds allow and always add up to the requested
total. Narrative text for each unit comes from a pluggable ScriptWriter.
"""

import math
import random
import re
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, List

from ..core.exceptions import ResourceNotFoundError, ValidationError
from ..core.models import ModelRegistry
from ..storage import UnitStore, Section, VideoUnit

logger = logging.getLogger(__name__)

# Seeds are drawn from this range once per section
MAX_BASE_SEED = 999_999


@dataclass
class UnitScript:
    """Narrative content for one unit."""

    objective: str
    voiceover_text: str
    visual_description: str
    optimized_prompt: Optional[str] = None


class ScriptWriter(ABC):
    """Produces one UnitScript per unit duration."""

    @abstractmethod
    def write(self, section: Section, durations: List[float]) -> List[UnitScript]:
        pass


class SentenceScriptWriter(ScriptWriter):
    """
    Splits the section text into contiguous sentence groups.

    Each unit gets the sentences of its group as voiceover and visual
    description. Sections with fewer sentences than units fall back to
    word groups.
    """

    SENTENCE_PATTERN = re.compile(r"(?<=[.!?])\s+")

    def write(self, section: Section, durations: List[float]) -> List[UnitScript]:
        count = len(durations)
        text = " ".join(section.content.split())

        pieces = [s for s in self.SENTENCE_PATTERN.split(text) if s]
        if len(pieces) < count:
            pieces = text.split(" ")

        groups = self._group(pieces, count)

        scripts = []
        for index, group in enumerate(groups, start=1):
            body = " ".join(group) or text
            scripts.append(
                UnitScript(
                    objective=f"Part {index} of {count}",
                    voiceover_text=body,
                    visual_description=body,
                )
            )
        return scripts

    @staticmethod
    def _group(pieces: List[str], count: int) -> List[List[str]]:
        total = len(pieces)
        return [pieces[round(i * total / count):round((i + 1) * total / count)] for i in range(count)]


def split_durations(total: float, max_unit_duration: float) -> List[float]:
    """
    Split ``total`` seconds into ``ceil(total / max_unit_duration)`` units.

    Whole seconds are spread evenly, leftover whole seconds go one each to
    the leading units, and a fractional remainder goes to the last unit:

        >>> split_durations(22, 10)
        [8, 7, 7]
        >>> split_durations(22.5, 10)
        [8, 7, 7.5]
    """
    count = math.ceil(total / max_unit_duration)
    whole = math.floor(total)
    fraction = round(total - whole, 6)

    base, extra = divmod(whole, count)
    durations: List[float] = [base + 1 if i < extra else base for i in range(count)]
    if fraction:
        durations[-1] = durations[-1] + fraction

    if max(durations) > max_unit_duration:
        # Only reachable with a fractional maximum; fall back to an equal split
        share = round(total / count, 3)
        durations = [share] * (count - 1)
        durations.append(round(total - share * (count - 1), 6))

    return durations


class ScriptSegmenter:
    """
    Creates the units of a section.

    Segmentation always replaces every existing unit (and job) of the
    section; it is never incremental.
    """

    def __init__(
        self,
        store: UnitStore,
        registry: ModelRegistry,
        languages: List[str],
        writer: Optional[ScriptWriter] = None,
        max_units: int = 60,
    ):
        self.store = store
        self.registry = registry
        self.languages = list(languages)
        self.writer = writer or SentenceScriptWriter()
        self.max_units = max_units

    def segment(
        self,
        section_id: str,
        total_duration: float,
        language: str,
        model_id: str,
    ) -> List[VideoUnit]:
        """
        Segment a section into units and persist them.

        Args:
            section_id: Section to segment
            total_duration: Target length of the whole section in seconds
            language: Script language code
            model_id: Model profile every unit is generated with

        Returns:
            The new units in ascending order

        Raises:
            ValidationError: On invalid input (nothing is written)
            ResourceNotFoundError: If the section does not exist
        """
        section = self.store.get_section(section_id)
        if section is None:
            raise ResourceNotFoundError(
                f"Section not found: {section_id}",
                resource_type="section",
                resource_id=section_id,
            )

        profile = self.registry.require(model_id)

        if language not in self.languages:
            raise ValidationError(
                f"Unsupported language: {language}",
                field="language",
                value=language,
                constraint=f"one of {self.languages}",
            )

        if not section.content or not section.content.strip():
            raise ValidationError("Section content is empty", field="content")

        if total_duration is None or not math.isfinite(total_duration) or total_duration < profile.min_unit_duration:
            raise ValidationError(
                f"Total duration must be a finite number of at least {profile.min_unit_duration}s for {model_id}",
                field="total_duration",
                value=total_duration,
                constraint=f">= {profile.min_unit_duration}",
            )

        unit_count = math.ceil(total_duration / profile.max_unit_duration)
        if unit_count > self.max_units:
            raise ValidationError(
                f"Section would need {unit_count} units (limit {self.max_units})",
                field="total_duration",
                value=total_duration,
                constraint=f"<= {self.max_units * profile.max_unit_duration}",
            )

        durations = split_durations(total_duration, profile.max_unit_duration)

        scripts = self.writer.write(section, durations)
        if len(scripts) != len(durations):
            raise ValidationError(
                f"Script writer returned {len(scripts)} scripts for {len(durations)} units",
                field="scripts",
            )

        base_seed = section.base_seed if section.base_seed is not None else random.randint(0, MAX_BASE_SEED)

        units = []
        start = 0.0
        for index, (duration, script) in enumerate(zip(durations, scripts), start=1):
            end = start + duration
            units.append(
                VideoUnit(
                    section_id=section_id,
                    order=index,
                    start_time=start,
                    end_time=end,
                    duration=duration,
                    model_id=model_id,
                    seed=base_seed + index - 1,
                    objective=script.objective,
                    voiceover_text=script.voiceover_text,
                    visual_description=script.visual_description,
                    optimized_prompt=script.optimized_prompt,
                )
            )
            start = end

        self.store.replace_units(section_id, units, total_duration, language, base_seed)

        logger.info(
            f"Segmented section {section_id} into {len(units)} units "
            f"({total_duration}s, model={model_id}, base_seed={base_seed})"
        )
        return units
