"""Text heuristics shared by the segmentation strategies: tokens, sentences, scenes, emotion."""

from __future__ import annotations

import math
import re
from typing import List

WORDS_PER_SECOND = 2.5
CHARS_PER_TOKEN = 4

SCENE_MARKERS = (
    "INT.",
    "EXT.",
    "INT/EXT",
    "EXT/INT",
    "FADE IN:",
    "FADE OUT.",
    "FADE TO:",
    "CUT TO:",
    "DISSOLVE TO:",
    "FLASHBACK:",
    "FLASHFORWARD:",
    "DREAM SEQUENCE:",
    "MONTAGE:",
)

# Words whose trailing period does not end a sentence.
_ABBREVIATIONS = {"INT", "EXT", "MR", "MRS", "MS", "DR", "ST", "VS", "JR", "SR", "NO"}

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"(?:(?<=[.!?])|(?<=[.!?][\"'”’)]))\s+")
_DIALOGUE_RE = re.compile(r"[\"“”]|^\s*[A-Z][A-Z .'-]{1,30}:\s*\S", re.MULTILINE)

_EMOTION_WORDS = {
    "afraid", "agony", "anger", "angry", "anguish", "panic", "panics", "rage", "rages",
    "fury", "furious", "terror", "terrified", "scream", "screams", "screaming", "sob",
    "sobs", "sobbing", "weep", "weeps", "cry", "cries", "crying", "tears", "grief",
    "despair", "horror", "dread", "fear", "fears", "desperate", "violence", "violent",
    "explode", "explodes", "exploding", "devastating", "devastated", "shatter",
    "shatters", "trembling", "trembles", "heartbroken", "ecstatic", "joy", "love",
    "hate", "betrayal", "racing", "races", "pounding", "shock", "shocked",
}


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    if estimate_tokens(text) <= max_tokens:
        return text
    limit = max(0, max_tokens * CHARS_PER_TOKEN - 3)
    cut = text[:limit]
    if " " in cut.strip():
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip() + "..."


def word_count(text: str) -> int:
    return len(text.split())


def estimate_duration(text: str) -> float:
    return word_count(text) / WORDS_PER_SECOND


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]


def split_sentences(text: str) -> List[str]:
    """Split into sentences, treating paragraph breaks as hard boundaries."""
    sentences: List[str] = []
    for paragraph in split_paragraphs(text):
        pending = ""
        for piece in _SENTENCE_RE.split(paragraph):
            piece = piece.strip()
            if not piece:
                continue
            pending = f"{pending} {piece}".strip() if pending else piece
            last_word = pending.split()[-1].rstrip(".").upper()
            if pending.endswith(".") and last_word in _ABBREVIATIONS:
                continue
            sentences.append(pending)
            pending = ""
        if pending:
            sentences.append(pending)
    return sentences


def starts_with_scene_marker(text: str) -> bool:
    head = text.lstrip().upper()
    return any(head.startswith(marker) for marker in SCENE_MARKERS)


def find_scene_markers(text: str) -> List[str]:
    found = []
    for line in text.splitlines():
        if starts_with_scene_marker(line):
            found.append(line.strip())
    return found


def has_dialogue(text: str) -> bool:
    return bool(_DIALOGUE_RE.search(text))


def detect_emotional_intensity(text: str) -> float:
    """Heuristic emotional intensity in [0, 1] from emotion words, exclamations and shouting."""
    words = re.findall(r"[A-Za-z']+", text)
    if not words:
        return 0.0
    hits = sum(1 for w in words if w.lower() in _EMOTION_WORDS)
    shouted = sum(1 for w in words if len(w) > 2 and w.isupper())
    exclamations = text.count("!")
    score = 0.25 * hits + 0.1 * exclamations + 0.15 * shouted
    return min(1.0, score)


def estimate_segment_count(script: str, target_duration: float, max_segments: int) -> int:
    words = word_count(script)
    if words == 0:
        return 0
    target_words = target_duration * WORDS_PER_SECOND
    return min(max_segments, max(1, math.ceil(words / target_words)))
