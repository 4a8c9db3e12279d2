"""
FunnelForge Services

Generation, bundling, telemetry and experimentation.
"""

from .brief_orchestrator import BriefOrchestrator, BriefUpdateResult, GenerationProgress
from .experiment_engine import ExperimentEngine, ExperimentResult, assign_variant, significance
from .generation_client import GenerationClient
from .page_synthesizer import PageSynthesizer, ParsedOk, ParseFailed, parse_generated_page
from .standalone_bundler import BundleInput, build_standalone_html
from .telemetry_ingest import TelemetryIngest

__all__ = [
    "BriefOrchestrator",
    "BriefUpdateResult",
    "BundleInput",
    "ExperimentEngine",
    "ExperimentResult",
    "GenerationClient",
    "GenerationProgress",
    "PageSynthesizer",
    "ParseFailed",
    "ParsedOk",
    "TelemetryIngest",
    "assign_variant",
    "build_standalone_html",
    "parse_generated_page",
    "significance",
]
