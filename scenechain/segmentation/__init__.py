"""
Script segmentation.

Deterministic strategies (even split, duration packing) always succeed; the
LLM-backed modes degrade to duration packing instead of failing.
"""

from .engine import SegmentationEngine, build_constraints
from .llm import Available, LangChainLLMClient, Unavailable, resolve_llm_capability
from .models import (
    EmptyScriptError,
    ExpansionConfig,
    ExpansionStyle,
    InvalidConstraintsError,
    SegmentationConstraints,
    SegmentationMode,
    SegmentationOptions,
    SegmentationResult,
    SegmentationWarning,
)

__all__ = [
    "Available",
    "EmptyScriptError",
    "ExpansionConfig",
    "ExpansionStyle",
    "InvalidConstraintsError",
    "LangChainLLMClient",
    "SegmentationConstraints",
    "SegmentationEngine",
    "SegmentationMode",
    "SegmentationOptions",
    "SegmentationResult",
    "SegmentationWarning",
    "Unavailable",
    "build_constraints",
    "resolve_llm_capability",
]
