from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from scenechain.segments.models import Segment


class SegmentationError(ValueError):
    pass


class EmptyScriptError(SegmentationError):
    pass


class InvalidConstraintsError(SegmentationError):
    pass


class SegmentationMode(str, Enum):
    AI = "ai"
    HYBRID = "hybrid"
    DURATION = "duration"
    EVEN_SPLIT = "even_split"

    @property
    def display_name(self) -> str:
        return {
            SegmentationMode.AI: "AI Scene Detection",
            SegmentationMode.HYBRID: "Hybrid (AI + Duration)",
            SegmentationMode.DURATION: "Duration-Based",
            SegmentationMode.EVEN_SPLIT: "Even Split",
        }[self]

    @classmethod
    def parse(cls, value: "str | SegmentationMode") -> "SegmentationMode":
        if isinstance(value, SegmentationMode):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        if normalized == "evensplit":
            normalized = "even_split"
        return cls(normalized)


class ExpansionStyle(str, Enum):
    VIVID = "vivid"
    EMOTIONAL = "emotional"
    ACTION = "action"
    ATMOSPHERIC = "atmospheric"
    BALANCED = "balanced"


class SegmentationConstraints(BaseModel):
    max_segments: int = Field(default=20, ge=1)
    max_tokens_per_segment: int = Field(default=200, ge=1)
    target_duration: float = Field(default=5.0, gt=0)
    min_duration: float = Field(default=1.0, gt=0)
    max_duration: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def _check_durations(self) -> "SegmentationConstraints":
        if self.min_duration > self.max_duration:
            raise ValueError(
                f"min_duration ({self.min_duration}) must not exceed max_duration ({self.max_duration})"
            )
        if not self.min_duration <= self.target_duration <= self.max_duration:
            raise ValueError(
                f"target_duration ({self.target_duration}) must lie within "
                f"[{self.min_duration}, {self.max_duration}]"
            )
        return self


class ExpansionConfig(BaseModel):
    style: ExpansionStyle = ExpansionStyle.BALANCED
    token_budget_per_segment: int = Field(default=60, gt=0)
    emotion_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    min_length_for_expansion: int = Field(default=80, ge=0)


class SegmentationOptions(BaseModel):
    enable_semantic_expansion: bool = False
    expansion: ExpansionConfig = ExpansionConfig()
    enable_dialogue_implantation: bool = False
    llm_timeout_sec: float = Field(default=60.0, gt=0)


class WarningSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class WarningKind(str, Enum):
    TOKEN_LIMIT_EXCEEDED = "token_limit_exceeded"
    LOW_CONFIDENCE = "low_confidence"
    AUTO_ADJUSTED = "auto_adjusted"
    FALLBACK_USED = "fallback_used"
    EXPANSION_FAILED = "expansion_failed"
    DIALOGUE_FAILED = "dialogue_failed"


_SEVERITY = {
    WarningKind.TOKEN_LIMIT_EXCEEDED: WarningSeverity.ERROR,
    WarningKind.LOW_CONFIDENCE: WarningSeverity.WARNING,
    WarningKind.AUTO_ADJUSTED: WarningSeverity.INFO,
    WarningKind.FALLBACK_USED: WarningSeverity.WARNING,
    WarningKind.EXPANSION_FAILED: WarningSeverity.INFO,
    WarningKind.DIALOGUE_FAILED: WarningSeverity.INFO,
}


class SegmentationWarning(BaseModel):
    kind: WarningKind
    severity: WarningSeverity
    message: str
    segment_index: Optional[int] = None

    @classmethod
    def make(cls, kind: WarningKind, message: str, segment_index: Optional[int] = None) -> "SegmentationWarning":
        return cls(kind=kind, severity=_SEVERITY[kind], message=message, segment_index=segment_index)

    @classmethod
    def token_limit_exceeded(cls, segment_index: int, tokens: int, limit: int) -> "SegmentationWarning":
        return cls.make(
            WarningKind.TOKEN_LIMIT_EXCEEDED,
            f"Segment {segment_index + 1} has {tokens} tokens (limit {limit}) and was truncated",
            segment_index,
        )

    @classmethod
    def low_confidence(cls, segment_index: int, confidence: float) -> "SegmentationWarning":
        return cls.make(
            WarningKind.LOW_CONFIDENCE,
            f"Segment {segment_index + 1} has low confidence ({confidence:.2f})",
            segment_index,
        )

    @classmethod
    def auto_adjusted(cls, description: str, segment_index: Optional[int] = None) -> "SegmentationWarning":
        return cls.make(WarningKind.AUTO_ADJUSTED, description, segment_index)

    @classmethod
    def fallback_used(cls, from_mode: SegmentationMode, to_mode: SegmentationMode, reason: str) -> "SegmentationWarning":
        return cls.make(
            WarningKind.FALLBACK_USED,
            f"{from_mode.display_name} unavailable ({reason}); fell back to {to_mode.display_name}",
        )


class SegmentationMetadata(BaseModel):
    requested_mode: SegmentationMode
    mode_used: SegmentationMode
    fallback_used: bool = False
    fallback_reason: Optional[str] = None
    llm_call_count: int = 0
    execution_time: float = 0.0
    segment_count: int = 0
    total_tokens: int = 0
    total_duration: float = 0.0
    average_confidence: float = 0.0
    expansion_stats: Dict[str, int] = {}


@dataclass
class SegmentationResult:
    segments: List[Segment]
    metadata: SegmentationMetadata
    warnings: List[SegmentationWarning] = field(default_factory=list)
    # segment id -> ExpandedPrompt for segments rewritten by semantic expansion
    expansions: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segments": [s.to_dict() for s in self.segments],
            "warnings": [w.model_dump(mode="json") for w in self.warnings],
            "metadata": self.metadata.model_dump(mode="json"),
        }
