from .cost import (
    CostBreakdown,
    InsufficientCreditsError,
    PipelineFeature,
    can_afford,
    credits_for_seconds,
    estimate_collection_cost,
    estimate_cost,
    price_for_seconds,
)

__all__ = [
    "CostBreakdown",
    "InsufficientCreditsError",
    "PipelineFeature",
    "can_afford",
    "credits_for_seconds",
    "estimate_collection_cost",
    "estimate_cost",
    "price_for_seconds",
]
