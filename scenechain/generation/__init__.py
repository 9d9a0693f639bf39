"""
Sequential, continuity-aware clip generation.
"""

from .capabilities import FrameDecoder, GenerationCapability, StorageCollaborator
from .continuity import ContinuityExtractor, OpenCVFrameDecoder
from .orchestrator import (
    GenerationOrchestrator,
    GenerationRequest,
    InvalidDurationError,
    NothingToGenerateError,
    RetryLimitExceededError,
    RunEvent,
    RunReport,
    RunStateError,
    RunStatus,
)
from .storage import LocalClipStorage

__all__ = [
    "ContinuityExtractor",
    "FrameDecoder",
    "GenerationCapability",
    "GenerationOrchestrator",
    "GenerationRequest",
    "InvalidDurationError",
    "LocalClipStorage",
    "NothingToGenerateError",
    "OpenCVFrameDecoder",
    "RetryLimitExceededError",
    "RunEvent",
    "RunReport",
    "RunStateError",
    "RunStatus",
    "StorageCollaborator",
]
