import asyncio
import math

import pytest

from scenechain.billing.cost import estimate_collection_cost
from scenechain.segmentation.engine import SegmentationEngine, build_constraints
from scenechain.segmentation.llm import Available, Unavailable
from scenechain.segmentation.models import (
    EmptyScriptError,
    InvalidConstraintsError,
    SegmentationConstraints,
    SegmentationMode,
    SegmentationOptions,
    WarningKind,
    WarningSeverity,
)
from scenechain.segmentation.text import WORDS_PER_SECOND, estimate_tokens
from scenechain.segments.collection import SegmentCollection


class ScriptedLLM:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def complete(self, instructions, constraints):
        self.calls.append((instructions, constraints))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class SlowLLM:
    async def complete(self, instructions, constraints):
        await asyncio.sleep(1)
        return {"scenes": [{"text": "late"}]}


def _script(total_words, lengths=(7, 11, 15, 9, 13)):
    sentences = []
    count = 0
    i = 0
    while count < total_words:
        n = min(lengths[i % len(lengths)], total_words - count)
        sentences.append(" ".join(f"word{count + j}" for j in range(n)) + ".")
        count += n
        i += 1
        if i % 6 == 0:
            sentences.append("\n\n")
    return " ".join(sentences)


SCRIPTS = [
    "A single short line.",
    _script(40),
    _script(333),
    "INT. LAB - NIGHT\nDr. Reyes leans over the console. Sparks fly!\n\nEXT. ROOF - DAWN\nShe watches the sun rise.",
    " ".join(["supercalifragilistic"] * 300),
]


def _segment(script, mode, constraints=None, llm=None, options=None):
    engine = SegmentationEngine(llm=llm, options=options)
    return asyncio.run(engine.segment(script, mode, constraints))


def _shape(result):
    return [(s.text, s.duration, s.order) for s in result.segments]


@pytest.mark.parametrize("script", SCRIPTS)
@pytest.mark.parametrize("max_segments", [1, 2, 5, 100])
@pytest.mark.parametrize("mode", ["duration", "even_split", "hybrid", "ai"])
def test_output_respects_constraints(script, max_segments, mode):
    constraints = SegmentationConstraints(max_segments=max_segments, max_tokens_per_segment=50)
    result = _segment(script, mode, constraints)
    assert 1 <= len(result.segments) <= max_segments
    assert [s.order for s in result.segments] == list(range(len(result.segments)))
    assert all(estimate_tokens(s.text) <= 50 for s in result.segments)
    assert all(s.duration > 0 for s in result.segments)


@pytest.mark.parametrize("script", SCRIPTS[1:4])
@pytest.mark.parametrize("llm", [Unavailable(), Available(ScriptedLLM(RuntimeError("boom")))])
def test_ai_and_hybrid_fall_back_to_duration(script, llm):
    constraints = SegmentationConstraints(max_segments=10)
    baseline = _segment(script, "duration", constraints)
    ai = _segment(script, "ai", constraints, llm=llm)
    hybrid = _segment(script, "hybrid", constraints, llm=llm)

    assert _shape(ai) == _shape(baseline)
    assert _shape(hybrid) == _shape(baseline)

    assert ai.metadata.mode_used is SegmentationMode.DURATION
    assert ai.metadata.fallback_used
    baseline_kinds = [w.kind for w in baseline.warnings]
    assert [w.kind for w in ai.warnings] == [WarningKind.FALLBACK_USED] + baseline_kinds
    assert "AI Scene Detection" in ai.warnings[0].message
    assert "Duration-Based" in ai.warnings[0].message

    assert [w.kind for w in hybrid.warnings] == baseline_kinds
    assert hybrid.metadata.requested_mode is SegmentationMode.HYBRID
    assert hybrid.metadata.mode_used is SegmentationMode.DURATION
    assert hybrid.metadata.fallback_reason


def test_ai_mode_uses_llm_scenes():
    llm = ScriptedLLM({"scenes": [
        {"text": "INT. LAB - NIGHT. Sparks fly.", "duration": 4, "confidence": 0.9,
         "camera_angle": "close-up", "scene_type": "interior", "emotion": "tense"},
        {"text": "EXT. ROOF - DAWN. She watches.", "duration": 40},
    ]})
    result = _segment(SCRIPTS[3], "ai", llm=Available(llm))

    assert result.metadata.mode_used is SegmentationMode.AI
    assert result.metadata.llm_call_count == 1
    assert [s.text for s in result.segments] == ["INT. LAB - NIGHT. Sparks fly.", "EXT. ROOF - DAWN. She watches."]
    first, second = result.segments
    assert first.duration == 4.0
    assert first.hints.camera_angle == "close-up"
    assert first.split_reason == "ai_scene"
    assert second.duration == 10.0
    assert any(w.kind is WarningKind.AUTO_ADJUSTED for w in result.warnings)
    instructions, payload = llm.calls[0]
    assert "INT. LAB - NIGHT" in instructions
    assert payload["script"] == SCRIPTS[3]


def test_ai_mode_clamps_scene_count():
    scenes = [{"text": f"Scene number {i}."} for i in range(6)]
    constraints = SegmentationConstraints(max_segments=2)
    result = _segment("Some script.", "ai", constraints, llm=Available(ScriptedLLM({"scenes": scenes})))
    assert len(result.segments) == 2
    assert result.metadata.mode_used is SegmentationMode.AI
    assert any(w.kind is WarningKind.AUTO_ADJUSTED for w in result.warnings)


@pytest.mark.parametrize("response", [{"scenes": []}, {"scenes": [{"text": ""}]}, {"other": 1}])
def test_unusable_llm_response_falls_back(response):
    result = _segment(SCRIPTS[2], "hybrid", llm=Available(ScriptedLLM(response)))
    assert result.metadata.mode_used is SegmentationMode.DURATION
    assert result.metadata.llm_call_count == 1


def test_llm_timeout_falls_back():
    options = SegmentationOptions(llm_timeout_sec=0.01)
    result = _segment(SCRIPTS[2], "ai", llm=Available(SlowLLM()), options=options)
    assert result.metadata.fallback_reason == "timeout"
    assert result.warnings[0].kind is WarningKind.FALLBACK_USED


def test_low_confidence_scenes_are_flagged():
    llm = ScriptedLLM({"scenes": [{"text": "Hmm.", "confidence": 0.3}, {"text": "Sure.", "confidence": 0.95}]})
    result = _segment("Hmm. Sure.", "ai", llm=Available(llm))
    low = [w for w in result.warnings if w.kind is WarningKind.LOW_CONFIDENCE]
    assert len(low) == 1
    assert low[0].segment_index == 0
    assert low[0].severity is WarningSeverity.WARNING
    assert result.metadata.average_confidence == pytest.approx(0.625)


@pytest.mark.parametrize("script", ["", "   \n\t "])
def test_empty_script_raises(script):
    with pytest.raises(EmptyScriptError):
        _segment(script, "duration")


def test_invalid_constraints():
    with pytest.raises(InvalidConstraintsError):
        build_constraints(min_duration=5.0, max_duration=2.0)
    with pytest.raises(InvalidConstraintsError):
        build_constraints(max_segments=0)
    assert build_constraints(max_segments=None).max_segments == 20


def test_unreachable_token_limit_truncates_with_error_warning():
    script = " ".join(["abcdefg"] * 400)
    constraints = SegmentationConstraints(max_segments=2, max_tokens_per_segment=20)
    result = _segment(script, "even_split", constraints)
    assert len(result.segments) == 2
    assert all(s.estimated_tokens <= 20 for s in result.segments)
    errors = [w for w in result.warnings if w.kind is WarningKind.TOKEN_LIMIT_EXCEEDED]
    assert len(errors) == 2
    assert errors[0].severity is WarningSeverity.ERROR


def test_token_positions_are_contiguous():
    result = _segment(SCRIPTS[2], "duration")
    position = 0
    for segment in result.segments:
        assert segment.start_token == position
        assert segment.end_token - segment.start_token == segment.estimated_tokens
        position = segment.end_token
    assert result.metadata.total_tokens == position


def test_even_split_metadata():
    result = _segment("word " * 100, "even_split", SegmentationConstraints(max_segments=5))
    assert result.metadata.segment_count == 5
    assert result.metadata.mode_used is SegmentationMode.EVEN_SPLIT
    assert result.metadata.llm_call_count == 0
    assert 0.0 <= result.metadata.average_confidence <= 1.0


def test_end_to_end_duration_mode_and_cost():
    script = _script(650)
    constraints = SegmentationConstraints(max_segments=100, target_duration=5.0)
    result = _segment(script, "duration", constraints)

    assert len(result.segments) == math.ceil(650 / (5 * WORDS_PER_SECOND))
    assert all(abs(s.duration - 5.0) <= 1.0 + 1e-9 for s in result.segments)

    collection = SegmentCollection(result.segments)
    before = estimate_collection_cost(collection.segments, ["continuity"])
    for segment in collection.segments[1::2]:
        collection.toggle_segment(segment.id)
    after = estimate_collection_cost(collection.segments, ["continuity"])
    assert 0.4 <= after.total_tokens / before.total_tokens <= 0.6
