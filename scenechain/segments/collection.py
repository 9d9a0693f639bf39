from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

from scenechain.segments.models import (
    ClipHandle,
    ContinuityFrame,
    GenerationState,
    GenerationStatus,
    Segment,
    can_transition,
)
from scenechain.utils.base import setup_logger

logger = setup_logger(__name__)


class SegmentNotFoundError(ValueError):
    pass


class SegmentLockedError(RuntimeError):
    """Raised when editing a segment that is generating, extracting a frame or completed."""


class CollectionLockedError(RuntimeError):
    """Raised on structural changes while a run owns the collection."""


class InvalidTransitionError(RuntimeError):
    pass


class SegmentCollection:
    """
    Ordered, single-writer container of segments.

    Every write goes through a locked method that re-derives ``order``, the
    enabled-neighbour links and the totals before releasing the lock, so readers
    never observe duplicate orders or stale links.
    """

    def __init__(self, segments: Optional[Iterable[Segment]] = None):
        self._lock = threading.RLock()
        self._segments: List[Segment] = list(segments or [])
        self._index: Dict[str, int] = {}
        self._run_active = False
        self._cursor_order: Optional[int] = None
        self.total_duration = 0.0
        self.enabled_count = 0
        self._rederive()

    # ---- reads ----

    def __len__(self) -> int:
        return len(self._segments)

    def __iter__(self) -> Iterator[Segment]:
        with self._lock:
            return iter(list(self._segments))

    @property
    def segments(self) -> List[Segment]:
        with self._lock:
            return list(self._segments)

    @property
    def count(self) -> int:
        return len(self._segments)

    @property
    def run_active(self) -> bool:
        return self._run_active

    def get(self, segment_id: str) -> Segment:
        with self._lock:
            idx = self._index.get(segment_id)
            if idx is None:
                raise SegmentNotFoundError(f"Segment not found: {segment_id}")
            return self._segments[idx]

    def enabled_segments(self) -> List[Segment]:
        with self._lock:
            return [s for s in self._segments if s.is_enabled]

    def first_enabled(self) -> Optional[Segment]:
        with self._lock:
            return next((s for s in self._segments if s.is_enabled), None)

    def next_enabled(self, segment_id: str) -> Optional[Segment]:
        with self._lock:
            next_id = self.get(segment_id).next_segment_id
            return self.get(next_id) if next_id else None

    def previous_enabled(self, segment_id: str) -> Optional[Segment]:
        with self._lock:
            prev_id = self.get(segment_id).previous_segment_id
            return self.get(prev_id) if prev_id else None

    def get_previous_frame(self, segment_id: str) -> Optional[ContinuityFrame]:
        """Frame of the nearest preceding enabled segment that completed with a frame."""
        with self._lock:
            prev = self.previous_enabled(segment_id)
            while prev is not None:
                if prev.generation_state.status is GenerationStatus.COMPLETED and prev.last_frame is not None:
                    return prev.last_frame
                prev = self.previous_enabled(prev.id)
            return None

    # ---- run ownership ----

    def begin_run(self) -> None:
        with self._lock:
            if self._run_active:
                raise CollectionLockedError("A run is already active for this collection")
            self._run_active = True
            self._cursor_order = 0

    def advance(self, order: int) -> None:
        """Record the run cursor; segments ordered before it are frozen until the run ends."""
        with self._lock:
            if not self._run_active:
                raise RuntimeError("advance() called without an active run")
            self._cursor_order = order

    def end_run(self) -> None:
        with self._lock:
            self._run_active = False
            self._cursor_order = None

    # ---- structural mutations ----

    def add_segment(
        self,
        text: str,
        duration: float = 5.0,
        position: Optional[int] = None,
        is_enabled: bool = True,
    ) -> Segment:
        segment = Segment(text=text, duration=duration, is_enabled=is_enabled)
        with self._mutation(structural=True):
            if position is None or position >= len(self._segments):
                self._segments.append(segment)
            else:
                self._segments.insert(max(0, position), segment)
        return segment

    def remove_segment(self, segment_id: str) -> Segment:
        with self._mutation(structural=True):
            segment = self.get(segment_id)
            self._segments.pop(self._index[segment_id])
        return segment

    def reorder(self, segment_id: str, new_position: int) -> None:
        with self._mutation(structural=True):
            segment = self.get(segment_id)
            self._segments.pop(self._index[segment_id])
            new_position = max(0, min(new_position, len(self._segments)))
            self._segments.insert(new_position, segment)

    def replace_all(self, segments: Iterable[Segment]) -> None:
        segments = list(segments)
        if len({s.id for s in segments}) != len(segments):
            raise ValueError("replace_all received duplicate segment ids")
        with self._mutation(structural=True):
            self._segments = segments

    # ---- per-segment edits ----

    def toggle_segment(self, segment_id: str) -> bool:
        with self._mutation():
            segment = self._editable(segment_id)
            segment.is_enabled = not segment.is_enabled
            return segment.is_enabled

    def edit_text(self, segment_id: str, text: str) -> None:
        with self._mutation():
            self._editable(segment_id).text = text

    def set_duration(self, segment_id: str, duration: float) -> None:
        if duration <= 0:
            raise ValueError(f"duration must be greater than 0, got {duration}")
        with self._mutation():
            self._editable(segment_id).duration = duration

    # ---- orchestrator writes ----

    def update_segment_state(self, segment_id: str, state: GenerationState) -> None:
        with self._lock:
            segment = self.get(segment_id)
            if not can_transition(segment.generation_state, state):
                raise InvalidTransitionError(
                    f"Invalid transition for {segment.name}: {segment.generation_state} -> {state}"
                )
            logger.debug(f"{segment.name}: {segment.generation_state} -> {state}")
            segment.generation_state = state

    def update_segment_last_frame(self, segment_id: str, frame: Optional[ContinuityFrame]) -> None:
        with self._lock:
            self.get(segment_id).last_frame = frame

    def attach_clip(self, segment_id: str, clip: ClipHandle) -> None:
        with self._lock:
            self.get(segment_id).clip = clip

    # ---- internals ----

    def _editable(self, segment_id: str) -> Segment:
        segment = self.get(segment_id)
        if segment.generation_state.is_locked:
            raise SegmentLockedError(
                f"{segment.name} is {segment.generation_state} and can no longer be edited"
            )
        if self._run_active and self._cursor_order is not None and segment.order < self._cursor_order:
            raise SegmentLockedError(f"{segment.name} is behind the run cursor and can no longer be edited")
        return segment

    @contextmanager
    def _mutation(self, structural: bool = False) -> Iterator[None]:
        with self._lock:
            if structural and self._run_active:
                raise CollectionLockedError("Cannot add, remove or reorder segments during a run")
            try:
                yield
            finally:
                self._rederive()

    def _rederive(self) -> None:
        self._index = {}
        for order, segment in enumerate(self._segments):
            if segment.id in self._index:
                raise ValueError(f"Duplicate segment id: {segment.id}")
            segment.order = order
            self._index[segment.id] = order

        prev_enabled: Optional[str] = None
        for segment in self._segments:
            segment.previous_segment_id = prev_enabled
            if segment.is_enabled:
                prev_enabled = segment.id

        next_enabled: Optional[str] = None
        for segment in reversed(self._segments):
            segment.next_segment_id = next_enabled
            if segment.is_enabled:
                next_enabled = segment.id

        enabled = [s for s in self._segments if s.is_enabled]
        self.enabled_count = len(enabled)
        self.total_duration = sum(s.duration for s in enabled)
