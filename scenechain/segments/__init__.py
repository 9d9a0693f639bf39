"""
Segments and the ordered collection that the generation run walks.
"""

from .collection import (
    CollectionLockedError,
    InvalidTransitionError,
    SegmentCollection,
    SegmentLockedError,
    SegmentNotFoundError,
)
from .models import ClipHandle, ContinuityFrame, GenerationState, GenerationStatus, SceneHints, Segment

__all__ = [
    "ClipHandle",
    "CollectionLockedError",
    "ContinuityFrame",
    "GenerationState",
    "GenerationStatus",
    "InvalidTransitionError",
    "SceneHints",
    "Segment",
    "SegmentCollection",
    "SegmentLockedError",
    "SegmentNotFoundError",
]
