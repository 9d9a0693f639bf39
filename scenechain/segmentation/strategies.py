from __future__ import annotations

import math
from bisect import bisect_left
from dataclasses import dataclass, field, replace
from itertools import accumulate
from typing import List, Optional, Sequence

from scenechain.segments.models import SceneHints
from scenechain.segmentation.text import (
    WORDS_PER_SECOND,
    estimate_tokens,
    split_sentences,
    starts_with_scene_marker,
)

SENTENCE_CONFIDENCE = 0.9
MID_SENTENCE_CONFIDENCE = 0.7


@dataclass
class Chunk:
    """Intermediate piece of script before it becomes a Segment."""

    text: str
    ends_on_sentence: bool = True
    duration: Optional[float] = None  # None -> estimate from word count
    confidence: float = SENTENCE_CONFIDENCE
    hints: SceneHints = field(default_factory=SceneHints)
    split_reason: str = ""

    @property
    def tokens(self) -> int:
        return estimate_tokens(self.text)


def _words_with_sentence_ends(script: str):
    words: List[str] = []
    ends = set()
    for sentence in split_sentences(script):
        words.extend(sentence.split())
        ends.add(len(words))
    return words, ends


def _split_reason(text: str, ends_on_sentence: bool, default: str) -> str:
    if starts_with_scene_marker(text):
        return "scene_heading"
    return "sentence_boundary" if ends_on_sentence else default


def _chunks_from_bounds(words: Sequence[str], ends, bounds: Sequence[int], default_reason: str) -> List[Chunk]:
    chunks = []
    start = 0
    for end in bounds:
        text = " ".join(words[start:end])
        on_sentence = end in ends
        chunks.append(Chunk(
            text=text,
            ends_on_sentence=on_sentence,
            confidence=SENTENCE_CONFIDENCE if on_sentence else MID_SENTENCE_CONFIDENCE,
            split_reason=_split_reason(text, on_sentence, default_reason),
        ))
        start = end
    return chunks


def balanced_bounds(weights: Sequence[float], pieces: int) -> List[int]:
    """End offsets splitting ``weights`` into ``pieces`` non-empty runs of similar total weight."""
    count = len(weights)
    pieces = max(1, min(pieces, count))
    cumulative = list(accumulate(weights))
    total = cumulative[-1] if cumulative else 0
    bounds: List[int] = []
    for k in range(1, pieces):
        end = bisect_left(cumulative, total * k / pieces) + 1
        lo = (bounds[-1] if bounds else 0) + 1
        hi = count - (pieces - k)
        bounds.append(min(max(end, lo), hi))
    bounds.append(count)
    return bounds


def even_split_chunks(script: str, max_segments: int) -> List[Chunk]:
    words, ends = _words_with_sentence_ends(script)
    if not words:
        return []
    bounds = balanced_bounds([len(w) + 1 for w in words], max_segments)
    return _chunks_from_bounds(words, ends, bounds, "even_split")


def duration_chunks(script: str, target_duration: float) -> List[Chunk]:
    """
    Pack the script into chunks of roughly ``target_duration`` seconds of speech.

    Chunk ends are placed at multiples of the target word count and moved onto a
    nearby sentence end when one lies within a tenth of the target, so the chunk
    count is always ceil(words / target_words).
    """
    words, ends = _words_with_sentence_ends(script)
    total = len(words)
    if total == 0:
        return []
    target_words = max(1.0, target_duration * WORDS_PER_SECOND)
    pieces = min(total, math.ceil(total / target_words))
    tolerance = max(1, int(target_words * 0.1))

    bounds: List[int] = []
    for k in range(1, pieces):
        lo = (bounds[-1] if bounds else 0) + 1
        hi = total - (pieces - k)
        ideal = min(max(math.floor(k * target_words), lo), hi)
        best = ideal
        for delta in sorted(range(-tolerance, tolerance + 1), key=abs):
            candidate = ideal + delta
            if lo <= candidate <= hi and candidate in ends:
                best = candidate
                break
        bounds.append(best)
    bounds.append(total)
    return _chunks_from_bounds(words, ends, bounds, "duration_target")


def split_chunk(chunk: Chunk, pieces: int) -> List[Chunk]:
    words = chunk.text.split()
    bounds = balanced_bounds([len(w) + 1 for w in words], pieces)
    out = []
    start = 0
    for i, end in enumerate(bounds):
        part = words[start:end]
        last = i == len(bounds) - 1
        duration = None
        if chunk.duration is not None:
            duration = chunk.duration * len(part) / len(words)
        out.append(replace(
            chunk,
            text=" ".join(part),
            ends_on_sentence=chunk.ends_on_sentence if last else False,
            duration=duration,
            confidence=chunk.confidence if last else min(chunk.confidence, MID_SENTENCE_CONFIDENCE),
            split_reason=chunk.split_reason if i == 0 else "token_limit",
        ))
        start = end
    return out


def split_oversized(chunks: List[Chunk], max_tokens: int) -> List[Chunk]:
    """Evenly split chunks above ``max_tokens``; single words that are still too long are left for truncation."""
    out: List[Chunk] = []
    for chunk in chunks:
        if chunk.tokens <= max_tokens or len(chunk.text.split()) < 2:
            out.append(chunk)
            continue
        pieces = math.ceil(chunk.tokens / max_tokens)
        parts = split_chunk(chunk, pieces)
        if len(parts) == 1:
            out.extend(parts)
        else:
            out.extend(split_oversized(parts, max_tokens))
    return out


def merge_chunks(first: Chunk, second: Chunk) -> Chunk:
    duration = None
    if first.duration is not None and second.duration is not None:
        duration = first.duration + second.duration
    return Chunk(
        text=f"{first.text} {second.text}",
        ends_on_sentence=second.ends_on_sentence,
        duration=duration,
        confidence=min(first.confidence, second.confidence),
        hints=first.hints,
        split_reason=first.split_reason or "merged",
    )


def merge_to_limit(chunks: List[Chunk], max_segments: int) -> List[Chunk]:
    """Merge the adjacent pair with the smallest combined size until at most ``max_segments`` remain."""
    chunks = list(chunks)
    while len(chunks) > max(1, max_segments):
        sizes = [chunks[i].tokens + chunks[i + 1].tokens for i in range(len(chunks) - 1)]
        i = sizes.index(min(sizes))
        chunks[i:i + 2] = [merge_chunks(chunks[i], chunks[i + 1])]
    return chunks
