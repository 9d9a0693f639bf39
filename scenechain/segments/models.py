from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class GenerationStatus(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    GENERATING = "generating"
    EXTRACTING_FRAME = "extracting_frame"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationState:
    """Per-segment generation state. ``reason`` is only set for ``failed``."""

    status: GenerationStatus = GenerationStatus.IDLE
    reason: Optional[str] = None

    @classmethod
    def failed(cls, reason: str) -> "GenerationState":
        return cls(GenerationStatus.FAILED, reason or "unknown error")

    @property
    def is_locked(self) -> bool:
        # Segments in these states may not be edited.
        return self.status in (
            GenerationStatus.GENERATING,
            GenerationStatus.EXTRACTING_FRAME,
            GenerationStatus.COMPLETED,
        )

    def __str__(self) -> str:
        if self.status is GenerationStatus.FAILED:
            return f"failed({self.reason})"
        return self.status.value


IDLE = GenerationState(GenerationStatus.IDLE)
QUEUED = GenerationState(GenerationStatus.QUEUED)
GENERATING = GenerationState(GenerationStatus.GENERATING)
EXTRACTING_FRAME = GenerationState(GenerationStatus.EXTRACTING_FRAME)
COMPLETED = GenerationState(GenerationStatus.COMPLETED)

# Allowed per-segment transitions; failed(reason) is matched on status.
ALLOWED_TRANSITIONS = {
    GenerationStatus.IDLE: {GenerationStatus.QUEUED},
    GenerationStatus.QUEUED: {GenerationStatus.GENERATING, GenerationStatus.IDLE},
    GenerationStatus.GENERATING: {
        GenerationStatus.EXTRACTING_FRAME,
        GenerationStatus.COMPLETED,
        GenerationStatus.FAILED,
    },
    GenerationStatus.EXTRACTING_FRAME: {GenerationStatus.COMPLETED},
    GenerationStatus.COMPLETED: set(),
    GenerationStatus.FAILED: {GenerationStatus.QUEUED},
}


def can_transition(current: GenerationState, new: GenerationState) -> bool:
    return new.status in ALLOWED_TRANSITIONS[current.status]


@dataclass
class ContinuityFrame:
    image: Any
    data: bytes
    source_segment_id: Optional[str] = None
    sampled_at: Optional[float] = None
    mime_type: str = "image/jpeg"


@dataclass
class ClipHandle:
    clip_id: str
    path: str
    duration: float
    name: str = ""
    prompt: str = ""
    reference_used: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SceneHints:
    camera_angle: Optional[str] = None
    scene_type: Optional[str] = None
    emotion: Optional[str] = None


@dataclass
class Segment:
    text: str
    duration: float = 5.0
    order: int = 0
    is_enabled: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    previous_segment_id: Optional[str] = None
    next_segment_id: Optional[str] = None
    generation_state: GenerationState = IDLE
    last_frame: Optional[ContinuityFrame] = None
    clip: Optional[ClipHandle] = None

    # Populated by the segmentation engine.
    source_text: Optional[str] = None
    estimated_tokens: int = 0
    start_token: int = 0
    end_token: int = 0
    confidence: float = 1.0
    hints: SceneHints = field(default_factory=SceneHints)
    split_reason: str = ""

    @property
    def name(self) -> str:
        return f"Segment_{self.order + 1}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order": self.order,
            "text": self.text,
            "source_text": self.source_text,
            "duration": self.duration,
            "is_enabled": self.is_enabled,
            "previous_segment_id": self.previous_segment_id,
            "next_segment_id": self.next_segment_id,
            "generation_state": str(self.generation_state),
            "has_last_frame": self.last_frame is not None,
            "clip_path": self.clip.path if self.clip else None,
            "estimated_tokens": self.estimated_tokens,
            "start_token": self.start_token,
            "end_token": self.end_token,
            "confidence": self.confidence,
            "hints": {
                "camera_angle": self.hints.camera_angle,
                "scene_type": self.hints.scene_type,
                "emotion": self.hints.emotion,
            },
            "split_reason": self.split_reason,
        }
