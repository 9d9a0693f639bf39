from __future__ import annotations

import math
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel

# Pricing constants.
RATE_PER_SECOND = 0.5  # credits per second of video
PRICE_PER_SECOND = 0.15  # USD
MINIMUM_DURATION = 1.0


class PipelineFeature(str, Enum):
    ENHANCEMENT = "enhancement"
    CONTINUITY = "continuity"
    CAMERA_DIRECTION = "camera_direction"
    LIGHTING = "lighting"


# Flat credit surcharge per segment using the feature.
FEATURE_SURCHARGES: Dict[PipelineFeature, int] = {
    PipelineFeature.ENHANCEMENT: 2,
    PipelineFeature.CONTINUITY: 1,
    PipelineFeature.CAMERA_DIRECTION: 1,
    PipelineFeature.LIGHTING: 1,
}


class InsufficientCreditsError(RuntimeError):
    def __init__(self, required: int, balance: int):
        super().__init__(f"Insufficient credits: {required} required, {balance} available")
        self.required = required
        self.balance = balance


class CostBreakdown(BaseModel):
    video_duration: float
    segment_count: int
    base_tokens: int
    surcharge_tokens: int
    multiplier: float
    total_tokens: int
    price_cents: int
    pipeline_features: List[PipelineFeature] = []

    @property
    def price_dollars(self) -> float:
        return self.price_cents / 100.0

    def format_breakdown(self) -> str:
        lines = [
            f"Duration: {self.video_duration:.1f}s across {self.segment_count} segment(s)",
            f"Base: {self.base_tokens} credits",
        ]
        for feature in self.pipeline_features:
            lines.append(f"+ {feature.value}: {FEATURE_SURCHARGES[feature]} credit(s) per segment")
        lines.append(f"Multiplier: x{self.multiplier:.2f}")
        lines.append(f"Total: {self.total_tokens} credits (${self.price_dollars:.2f})")
        return "\n".join(lines)


def parse_features(features: Optional[Iterable[str | PipelineFeature]]) -> List[PipelineFeature]:
    parsed: List[PipelineFeature] = []
    for feature in features or []:
        value = feature if isinstance(feature, PipelineFeature) else PipelineFeature(str(feature).lower())
        if value not in parsed:
            parsed.append(value)
    return parsed


def credits_for_seconds(duration: float) -> int:
    if duration <= 0:
        return 0
    return math.ceil(duration * RATE_PER_SECOND)


def price_for_seconds(duration: float) -> int:
    """Price in cents; zero below the billable minimum."""
    if duration < MINIMUM_DURATION:
        return 0
    return int(round(duration * PRICE_PER_SECOND * 100))


def tokens_to_debit(credits: float) -> int:
    return math.ceil(credits)


def surcharge_for_segments(segment_count: int, features: Iterable[PipelineFeature]) -> int:
    total = 0
    for feature in features:
        # The first segment has nothing to continue from.
        uses = max(0, segment_count - 1) if feature is PipelineFeature.CONTINUITY else segment_count
        total += FEATURE_SURCHARGES[feature] * uses
    return total


def estimate_cost(
    total_duration: float,
    segment_count: int = 1,
    features: Optional[Iterable[str | PipelineFeature]] = None,
) -> CostBreakdown:
    """Cost of generating ``segment_count`` enabled segments totalling ``total_duration`` seconds."""
    parsed = parse_features(features)
    base = credits_for_seconds(total_duration)
    surcharge = surcharge_for_segments(segment_count, parsed) if base > 0 else 0
    total = base + surcharge
    multiplier = (total / base) if base else 1.0
    return CostBreakdown(
        video_duration=total_duration,
        segment_count=segment_count,
        base_tokens=base,
        surcharge_tokens=surcharge,
        multiplier=round(multiplier, 4),
        total_tokens=total,
        price_cents=int(round(price_for_seconds(total_duration) * multiplier)),
        pipeline_features=parsed,
    )


def estimate_collection_cost(segments, features=None) -> CostBreakdown:
    enabled = [s for s in segments if s.is_enabled]
    return estimate_cost(sum(s.duration for s in enabled), len(enabled), features)


def can_afford(total_tokens: int, balance: int, unlimited: bool = False) -> bool:
    if unlimited:
        return True
    return balance >= total_tokens


def ensure_affordable(breakdown: CostBreakdown, balance: int, unlimited: bool = False) -> None:
    if not can_afford(breakdown.total_tokens, balance, unlimited):
        raise InsufficientCreditsError(breakdown.total_tokens, balance)


def estimate_clips_possible(balance: int, duration: float, features=None) -> int:
    per_clip = estimate_cost(duration, 1, features).total_tokens
    if per_clip <= 0:
        return 0
    return balance // per_clip

