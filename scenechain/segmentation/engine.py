from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from scenechain.segmentation.expansion import expand_segments, implant_dialogue
from scenechain.segmentation.llm import Available, LLMCapability, Unavailable, load_prompts, render_prompt
from scenechain.segmentation.models import (
    EmptyScriptError,
    InvalidConstraintsError,
    SegmentationConstraints,
    SegmentationMetadata,
    SegmentationMode,
    SegmentationOptions,
    SegmentationResult,
    SegmentationWarning,
    WarningKind,
)
from scenechain.segmentation.strategies import (
    Chunk,
    duration_chunks,
    even_split_chunks,
    merge_to_limit,
    split_oversized,
)
from scenechain.segmentation.text import (
    estimate_duration,
    estimate_tokens,
    find_scene_markers,
    truncate_to_tokens,
)
from scenechain.segments.models import SceneHints, Segment
from scenechain.utils.base import setup_logger

logger = setup_logger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.6
DEFAULT_AI_CONFIDENCE = 0.8


def build_constraints(**kwargs: Any) -> SegmentationConstraints:
    try:
        return SegmentationConstraints(**{k: v for k, v in kwargs.items() if v is not None})
    except ValidationError as exc:
        raise InvalidConstraintsError(str(exc)) from exc


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_ai_scenes(payload: Dict[str, Any]) -> List[Chunk]:
    scenes = payload.get("scenes")
    if not isinstance(scenes, list) or not scenes:
        raise ValueError("response has no scenes")
    chunks = []
    for i, scene in enumerate(scenes):
        if not isinstance(scene, dict):
            raise ValueError(f"scene {i} is not an object")
        text = str(scene.get("text") or "").strip()
        if not text:
            raise ValueError(f"scene {i} has no text")
        duration = scene.get("duration")
        try:
            duration = float(duration) if duration is not None else None
        except (TypeError, ValueError):
            duration = None
        if duration is not None and duration <= 0:
            duration = None
        try:
            confidence = float(scene.get("confidence", DEFAULT_AI_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = DEFAULT_AI_CONFIDENCE
        chunks.append(Chunk(
            text=text,
            duration=duration,
            confidence=max(0.0, min(1.0, confidence)),
            hints=SceneHints(
                camera_angle=_optional_str(scene.get("camera_angle")),
                scene_type=_optional_str(scene.get("scene_type")),
                emotion=_optional_str(scene.get("emotion")),
            ),
            split_reason="ai_scene",
        ))
    return chunks


class SegmentationEngine:
    """
    Turns a script into ordered segments.

    ``even_split`` and ``duration`` are deterministic. ``ai`` and ``hybrid`` ask the
    LLM for scene boundaries and fall back to ``duration`` whenever the LLM is
    unavailable or its answer cannot be used.
    """

    def __init__(
        self,
        llm: Optional[LLMCapability] = None,
        options: Optional[SegmentationOptions] = None,
        prompts: Optional[Dict[str, Any]] = None,
    ):
        self.llm = llm if llm is not None else Unavailable()
        self.options = options or SegmentationOptions()
        self._prompts = prompts

    @property
    def prompts(self) -> Dict[str, Any]:
        if self._prompts is None:
            self._prompts = load_prompts()
        return self._prompts

    async def segment(
        self,
        script: str,
        mode: SegmentationMode | str = SegmentationMode.HYBRID,
        constraints: Optional[SegmentationConstraints] = None,
        llm: Optional[LLMCapability] = None,
    ) -> SegmentationResult:
        started = time.perf_counter()
        if not script or not script.strip():
            raise EmptyScriptError("Script is empty")
        mode = SegmentationMode.parse(mode)
        constraints = constraints or SegmentationConstraints()
        llm = llm if llm is not None else self.llm

        warnings: List[SegmentationWarning] = []
        llm_calls = 0
        mode_used = mode
        fallback_reason = None

        if mode in (SegmentationMode.AI, SegmentationMode.HYBRID):
            chunks, fallback_reason, llm_calls = await self._ai_chunks(script, constraints, llm)
            if chunks is None:
                mode_used = SegmentationMode.DURATION
                logger.info(f"{mode.display_name} fell back to duration mode: {fallback_reason}")
                if mode is SegmentationMode.AI:
                    warnings.append(SegmentationWarning.fallback_used(mode, mode_used, fallback_reason))
                chunks = duration_chunks(script, constraints.target_duration)
        elif mode is SegmentationMode.DURATION:
            chunks = duration_chunks(script, constraints.target_duration)
        else:
            chunks = even_split_chunks(script, constraints.max_segments)

        chunks = split_oversized(chunks, constraints.max_tokens_per_segment)
        before_merge = len(chunks)
        chunks = merge_to_limit(chunks, constraints.max_segments)
        if len(chunks) < before_merge:
            warnings.append(SegmentationWarning.auto_adjusted(
                f"Merged {before_merge} segments into {len(chunks)} to respect max_segments={constraints.max_segments}"
            ))

        segments = self._finalize(chunks, constraints, warnings)

        expansion_stats: Dict[str, int] = {}
        expansions: Dict[str, Any] = {}
        if self.options.enable_semantic_expansion:
            calls, stats, expansions = await self._expand(segments, constraints, llm, warnings)
            llm_calls += calls
            expansion_stats.update(stats)
        if self.options.enable_dialogue_implantation:
            calls, stats = await self._implant_dialogue(segments, constraints, llm, warnings)
            llm_calls += calls
            expansion_stats.update({f"dialogue_{k}": v for k, v in stats.items()})

        _assign_token_positions(segments)
        metadata = SegmentationMetadata(
            requested_mode=mode,
            mode_used=mode_used,
            fallback_used=mode_used is not mode,
            fallback_reason=fallback_reason if mode_used is not mode else None,
            llm_call_count=llm_calls,
            execution_time=time.perf_counter() - started,
            segment_count=len(segments),
            total_tokens=sum(s.estimated_tokens for s in segments),
            total_duration=sum(s.duration for s in segments),
            average_confidence=(sum(s.confidence for s in segments) / len(segments)) if segments else 0.0,
            expansion_stats=expansion_stats,
        )
        logger.info(
            f"Segmented script into {len(segments)} segments "
            f"(requested={mode.value}, used={mode_used.value}, warnings={len(warnings)})"
        )
        return SegmentationResult(segments=segments, metadata=metadata, warnings=warnings, expansions=expansions)

    async def _ai_chunks(
        self,
        script: str,
        constraints: SegmentationConstraints,
        llm: LLMCapability,
    ) -> Tuple[Optional[List[Chunk]], Optional[str], int]:
        if isinstance(llm, Unavailable):
            return None, llm.reason, 0

        instructions = render_prompt(
            self.prompts["segmentation"],
            max_segments=constraints.max_segments,
            target_duration=constraints.target_duration,
            max_duration=constraints.max_duration,
            max_tokens_per_segment=constraints.max_tokens_per_segment,
            scene_markers=", ".join(find_scene_markers(script)) or "none",
        )
        payload = {"script": script, **constraints.model_dump()}
        try:
            response = await asyncio.wait_for(
                llm.client.complete(instructions, payload),
                timeout=self.options.llm_timeout_sec,
            )
            return parse_ai_scenes(response), None, 1
        except asyncio.TimeoutError:
            logger.warning("LLM segmentation timed out")
            return None, "timeout", 1
        except Exception as exc:
            logger.warning(f"LLM segmentation failed: {exc}")
            return None, f"{type(exc).__name__}: {exc}", 1

    def _finalize(
        self,
        chunks: List[Chunk],
        constraints: SegmentationConstraints,
        warnings: List[SegmentationWarning],
    ) -> List[Segment]:
        segments = []
        for index, chunk in enumerate(chunks):
            text = chunk.text
            tokens = estimate_tokens(text)
            if tokens > constraints.max_tokens_per_segment:
                warnings.append(SegmentationWarning.token_limit_exceeded(
                    index, tokens, constraints.max_tokens_per_segment
                ))
                text = truncate_to_tokens(text, constraints.max_tokens_per_segment)

            duration = chunk.duration if chunk.duration is not None else estimate_duration(text)
            if duration > constraints.max_duration:
                warnings.append(SegmentationWarning.auto_adjusted(
                    f"Segment {index + 1} shortened from {duration:.1f}s to {constraints.max_duration:.1f}s",
                    index,
                ))
            duration = round(min(max(duration, constraints.min_duration), constraints.max_duration), 1)

            if chunk.confidence < LOW_CONFIDENCE_THRESHOLD:
                warnings.append(SegmentationWarning.low_confidence(index, chunk.confidence))

            segments.append(Segment(
                text=text,
                duration=duration,
                order=index,
                source_text=text,
                estimated_tokens=estimate_tokens(text),
                confidence=chunk.confidence,
                hints=chunk.hints,
                split_reason=chunk.split_reason,
            ))
        return segments

    async def _expand(self, segments, constraints, llm, warnings):
        if not isinstance(llm, Available):
            warnings.append(SegmentationWarning.make(
                WarningKind.EXPANSION_FAILED, f"Semantic expansion skipped: {llm.reason}"
            ))
            return 0, {}, {}
        outcome = await expand_segments(
            segments,
            llm.client,
            self.options.expansion,
            self.prompts["expansion"],
            constraints.max_tokens_per_segment,
            self.options.llm_timeout_sec,
        )
        warnings.extend(outcome.warnings)
        return outcome.llm_calls, outcome.stats, outcome.expansions

    async def _implant_dialogue(self, segments, constraints, llm, warnings):
        if not isinstance(llm, Available):
            warnings.append(SegmentationWarning.make(
                WarningKind.DIALOGUE_FAILED, f"Dialogue implantation skipped: {llm.reason}"
            ))
            return 0, {}
        outcome = await implant_dialogue(
            segments,
            llm.client,
            self.prompts["dialogue"],
            constraints.max_tokens_per_segment,
            self.options.llm_timeout_sec,
        )
        warnings.extend(outcome.warnings)
        return outcome.llm_calls, outcome.stats


def _assign_token_positions(segments: List[Segment]) -> None:
    position = 0
    for segment in segments:
        segment.estimated_tokens = estimate_tokens(segment.text)
        segment.start_token = position
        position += segment.estimated_tokens
        segment.end_token = position
