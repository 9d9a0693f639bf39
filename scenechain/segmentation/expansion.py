from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from scenechain.segmentation.llm import LLMClient, render_prompt
from scenechain.segmentation.models import ExpansionConfig, SegmentationWarning, WarningKind
from scenechain.segmentation.text import detect_emotional_intensity, estimate_tokens, has_dialogue
from scenechain.segments.models import Segment
from scenechain.utils.base import setup_logger

logger = setup_logger(__name__)

DIALOGUE_MAX_WORDS = 15


@dataclass
class ExpandedPrompt:
    text: str
    additional_tokens: int
    expansion_reason: str
    emotion_score: float
    expansion_style: str
    llm_confidence: Optional[float] = None


@dataclass
class RewriteOutcome:
    warnings: List[SegmentationWarning] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)
    llm_calls: int = 0
    expansions: Dict[str, ExpandedPrompt] = field(default_factory=dict)


def identify_expansion_candidates(segments: List[Segment], config: ExpansionConfig) -> List[int]:
    """Indexes of segments that are short or emotionally charged."""
    candidates = []
    for i, segment in enumerate(segments):
        short = len(segment.text) < config.min_length_for_expansion
        emotional = detect_emotional_intensity(segment.text) >= config.emotion_threshold
        if short or emotional:
            candidates.append(i)
    return candidates


def _confidence(value: Any) -> Optional[float]:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return None


async def expand_segments(
    segments: List[Segment],
    client: LLMClient,
    config: ExpansionConfig,
    instructions: Dict[str, Any],
    max_tokens: int,
    timeout: float,
) -> RewriteOutcome:
    """Rewrite candidate segment text in the configured style; any failure keeps the original text."""
    outcome = RewriteOutcome(stats={"candidates": 0, "expanded": 0, "failed": 0})
    style = config.style.value
    system = render_prompt(instructions["base"], token_budget=config.token_budget_per_segment)
    system = f"{system}\nStyle: {instructions['styles'][style]}"

    candidates = identify_expansion_candidates(segments, config)
    outcome.stats["candidates"] = len(candidates)
    for i in candidates:
        segment = segments[i]
        emotion = detect_emotional_intensity(segment.text)
        outcome.llm_calls += 1
        try:
            result = await asyncio.wait_for(
                client.complete(system, {"text": segment.text, "style": style, "emotion_score": emotion}),
                timeout=timeout,
            )
            text = str(result.get("text") or "").strip()
            if not text:
                raise ValueError("empty expansion")
            old_tokens = estimate_tokens(segment.text)
            limit = min(max_tokens, old_tokens + config.token_budget_per_segment)
            if estimate_tokens(text) > limit:
                raise ValueError(f"expansion uses {estimate_tokens(text)} tokens, limit {limit}")
        except Exception as exc:
            reason = "timeout" if isinstance(exc, asyncio.TimeoutError) else str(exc)
            logger.warning(f"Semantic expansion failed for segment {i}: {reason}")
            outcome.stats["failed"] += 1
            outcome.warnings.append(SegmentationWarning.make(
                WarningKind.EXPANSION_FAILED, f"Expansion skipped for segment {i + 1}: {reason}", i
            ))
            continue

        outcome.expansions[segment.id] = ExpandedPrompt(
            text=text,
            additional_tokens=estimate_tokens(text) - old_tokens,
            expansion_reason="short" if len(segment.text) < config.min_length_for_expansion else "emotional",
            emotion_score=emotion,
            expansion_style=style,
            llm_confidence=_confidence(result.get("confidence")),
        )
        segment.text = text
        segment.estimated_tokens = estimate_tokens(text)
        outcome.stats["expanded"] += 1
    return outcome


async def implant_dialogue(
    segments: List[Segment],
    client: LLMClient,
    instructions: str,
    max_tokens: int,
    timeout: float,
) -> RewriteOutcome:
    outcome = RewriteOutcome(stats={"dialogue_free": 0, "implanted": 0, "failed": 0})
    system = render_prompt(instructions, max_words=DIALOGUE_MAX_WORDS)
    for i, segment in enumerate(segments):
        if has_dialogue(segment.text):
            continue
        outcome.stats["dialogue_free"] += 1
        outcome.llm_calls += 1
        try:
            result = await asyncio.wait_for(client.complete(system, {"text": segment.text}), timeout=timeout)
            speaker = str(result.get("speaker") or "").strip()
            line = str(result.get("line") or "").strip().strip('"')
            if not speaker or not line:
                raise ValueError("dialogue response missing speaker or line")
            text = f'{segment.text} {speaker.upper()}: "{line}"'
            if estimate_tokens(text) > max_tokens:
                raise ValueError(f"dialogue would exceed {max_tokens} tokens")
        except Exception as exc:
            reason = "timeout" if isinstance(exc, asyncio.TimeoutError) else str(exc)
            logger.warning(f"Dialogue implantation failed for segment {i}: {reason}")
            outcome.stats["failed"] += 1
            outcome.warnings.append(SegmentationWarning.make(
                WarningKind.DIALOGUE_FAILED, f"Dialogue skipped for segment {i + 1}: {reason}", i
            ))
            continue
        segment.text = text
        segment.estimated_tokens = estimate_tokens(text)
        outcome.stats["implanted"] += 1
    return outcome
