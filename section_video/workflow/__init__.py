"""
Workflow Orchestration
======================

The stages a section goes through, in order.

Components:
- ScriptSegmenter: Splits a section into ordered units
- ContinuityResolver: Seed and reference image chaining between units
- GenerationDispatcher: Submits units to the generation provider
- WebhookReconciler: Applies provider webhooks to jobs and units
- ApprovalGate: Operator approval and regeneration
- SectionCompiler: Concatenates approved units
- SectionPipeline: Wires everything from one Config
"""

from .segmenter import ScriptSegmenter, ScriptWriter, SentenceScriptWriter, UnitScript, split_durations
from .continuity import ContinuityResolver, ContinuityDecision
from .dispatcher import GenerationDispatcher, DispatchReceipt
from .reconciler import WebhookReconciler, WebhookEvent, WebhookOutcome
from .approval import ApprovalGate
from .compiler import SectionCompiler
from .pipeline import SectionPipeline

__all__ = [
    "ScriptSegmenter",
    "ScriptWriter",
    "SentenceScriptWriter",
    "UnitScript",
    "split_durations",
    "ContinuityResolver",
    "ContinuityDecision",
    "GenerationDispatcher",
    "DispatchReceipt",
    "WebhookReconciler",
    "WebhookEvent",
    "WebhookOutcome",
    "ApprovalGate",
    "SectionCompiler",
    "SectionPipeline",
]
