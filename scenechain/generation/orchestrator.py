from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel

from scenechain.billing.cost import CostBreakdown, ensure_affordable, estimate_collection_cost
from scenechain.generation.capabilities import GenerationCapability, StorageCollaborator
from scenechain.generation.continuity import ContinuityExtractor
from scenechain.segments.collection import SegmentCollection
from scenechain.segments.models import (
    COMPLETED,
    EXTRACTING_FRAME,
    GENERATING,
    QUEUED,
    ClipHandle,
    GenerationState,
    GenerationStatus,
    Segment,
)
from scenechain.utils.base import setup_logger
from scenechain.utils.logging_setup import log_context

logger = setup_logger(__name__)

CONTINUITY_INSTRUCTION = (
    "\n\n[CONTINUITY NOTE: This scene continues from the previous clip. "
    "Maintain visual consistency and flow.]"
)
DEFAULT_GENERATION_TIMEOUT_SEC = 600.0
DEFAULT_MAX_ATTEMPTS = 3


class GenerationError(RuntimeError):
    pass


class NothingToGenerateError(GenerationError):
    pass


class InvalidDurationError(GenerationError):
    pass


class RunStateError(GenerationError):
    pass


class RetryLimitExceededError(GenerationError):
    pass


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    HALTED_ON_ERROR = "halted_on_error"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


RUN_TRANSITIONS = {
    RunStatus.IDLE: {RunStatus.RUNNING},
    RunStatus.RUNNING: {RunStatus.HALTED_ON_ERROR, RunStatus.COMPLETED, RunStatus.CANCELLED},
    RunStatus.HALTED_ON_ERROR: {RunStatus.RUNNING, RunStatus.CANCELLED},
    RunStatus.COMPLETED: set(),
    RunStatus.CANCELLED: set(),
}


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    reference_image: Optional[bytes]
    duration: float
    name: str
    reference_segment_id: Optional[str] = None


class RunEvent(BaseModel):
    type: str
    run_id: str
    segment_id: Optional[str] = None
    order: Optional[int] = None
    state: Optional[str] = None
    message: Optional[str] = None
    progress: float = 0.0

    class Config:
        extra = "allow"


class RunReport(BaseModel):
    run_id: str
    status: RunStatus
    progress: float
    completed_ids: List[str] = []
    skipped_ids: List[str] = []
    failed_ids: List[str] = []
    cursor_segment_id: Optional[str] = None
    last_error: Optional[str] = None
    attempts: Dict[str, int] = {}


class GenerationOrchestrator:
    """
    Generates the enabled segments of a collection one at a time.

    Each segment after the first is sent with the continuity frame of the most
    recent completed predecessor. A failed generation halts the run; the caller
    then chooses ``retry()`` or ``skip()``. ``cancel()`` stops the run once the
    in-flight call has resolved.
    """

    def __init__(
        self,
        collection: SegmentCollection,
        generator: GenerationCapability,
        storage: StorageCollaborator,
        extractor: Optional[ContinuityExtractor] = None,
        continuity_enabled: bool = True,
        features: Optional[Iterable[str]] = None,
        generation_timeout: float = DEFAULT_GENERATION_TIMEOUT_SEC,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        listener: Optional[Callable[[RunEvent], None]] = None,
        run_id: Optional[str] = None,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.collection = collection
        self.generator = generator
        self.storage = storage
        self.extractor = extractor
        self.continuity_enabled = continuity_enabled
        self.features = list(features) if features is not None else (["continuity"] if continuity_enabled else [])
        self.generation_timeout = generation_timeout
        self.max_attempts = max_attempts
        self._listeners: List[Callable[[RunEvent], None]] = [listener] if listener is not None else []
        self.run_id = run_id or uuid.uuid4().hex[:12]

        self.status = RunStatus.IDLE
        self.cost: Optional[CostBreakdown] = None
        self.last_error: Optional[str] = None
        self._cursor: Optional[str] = None
        self._cancel_requested = False
        self._skipped: Set[str] = set()
        self._attempts: Dict[str, int] = {}
        self._requests: Dict[str, GenerationRequest] = {}

    # ---- public API ----

    @property
    def cursor(self) -> Optional[Segment]:
        return self.collection.get(self._cursor) if self._cursor else None

    @property
    def progress(self) -> float:
        enabled = self.collection.enabled_segments()
        if not enabled:
            return 0.0
        done = sum(
            1 for s in enabled
            if s.generation_state.status is GenerationStatus.COMPLETED or s.id in self._skipped
        )
        return done / len(enabled)

    def request_for(self, segment_id: str) -> Optional[GenerationRequest]:
        """The request issued for a segment; retries resend exactly this."""
        return self._requests.get(segment_id)

    def add_listener(self, listener: Callable[[RunEvent], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[RunEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def report(self) -> RunReport:
        enabled = self.collection.enabled_segments()
        return RunReport(
            run_id=self.run_id,
            status=self.status,
            progress=self.progress,
            completed_ids=[s.id for s in enabled if s.generation_state.status is GenerationStatus.COMPLETED],
            skipped_ids=[s.id for s in enabled if s.id in self._skipped],
            failed_ids=[s.id for s in enabled if s.generation_state.status is GenerationStatus.FAILED],
            cursor_segment_id=self._cursor,
            last_error=self.last_error,
            attempts=dict(self._attempts),
        )

    async def start(self, balance: Optional[int] = None, unlimited: bool = False) -> RunReport:
        """Validate the collection, check affordability and drive the run until it completes or halts."""
        if self.status is not RunStatus.IDLE:
            raise RunStateError(f"Run {self.run_id} has already started ({self.status.value})")

        enabled = self.collection.enabled_segments()
        if not enabled:
            raise NothingToGenerateError("No clips selected for generation")
        invalid = [s.name for s in enabled if s.duration <= 0]
        if invalid:
            raise InvalidDurationError(f"Segments without a positive duration: {', '.join(invalid)}")

        self.cost = estimate_collection_cost(enabled, self.features)
        if balance is not None:
            ensure_affordable(self.cost, balance, unlimited)

        self.collection.begin_run()
        self._move_cursor(self.collection.first_enabled())
        self._set_status(RunStatus.RUNNING)
        logger.info(
            f"Run {self.run_id} started: {len(enabled)} segments, "
            f"{self.collection.total_duration:.1f}s, {self.cost.total_tokens} credits"
        )
        self._emit("run_started", message=f"{len(enabled)} segments", total_tokens=self.cost.total_tokens)
        return await self._drive()

    async def retry(self) -> RunReport:
        """Re-issue the failed segment's original request and continue the run."""
        segment = self._halted_segment()
        if not segment.is_enabled:
            raise RunStateError(f"{segment.name} was disabled; skip it instead")
        if self._attempts.get(segment.id, 0) >= self.max_attempts:
            raise RetryLimitExceededError(
                f"{segment.name} failed {self._attempts[segment.id]} times; skip it to continue"
            )
        logger.info(f"Retrying {segment.name}")
        self._set_status(RunStatus.RUNNING)
        return await self._drive()

    async def skip(self) -> RunReport:
        """Leave the failed segment as failed and continue with the next enabled one."""
        segment = self._halted_segment()
        self._skipped.add(segment.id)
        self._move_cursor(self.collection.next_enabled(segment.id))
        logger.info(f"Skipping {segment.name}")
        self._emit("segment_skipped", segment)
        self._set_status(RunStatus.RUNNING)
        return await self._drive()

    def cancel(self) -> None:
        if self.status is RunStatus.HALTED_ON_ERROR:
            self._finish(RunStatus.CANCELLED)
        elif self.status is RunStatus.RUNNING:
            logger.info(f"Cancellation requested for run {self.run_id}")
            self._cancel_requested = True

    # ---- run loop ----

    async def _drive(self) -> RunReport:
        while self._cursor is not None:
            if self._cancel_requested:
                self._finish(RunStatus.CANCELLED)
                return self.report()

            segment = self.collection.get(self._cursor)
            if not segment.is_enabled or segment.generation_state.status is GenerationStatus.COMPLETED:
                self._move_cursor(self.collection.next_enabled(segment.id))
                continue

            if not await self._generate(segment):
                if self._cancel_requested:
                    self._finish(RunStatus.CANCELLED)
                    return self.report()
                self._set_status(RunStatus.HALTED_ON_ERROR)
                self._emit("run_halted", segment, message=self.last_error)
                return self.report()
            self._move_cursor(self.collection.next_enabled(segment.id))

        self._finish(RunStatus.COMPLETED)
        return self.report()

    def _build_request(self, segment: Segment) -> GenerationRequest:
        frame = self.collection.get_previous_frame(segment.id) if self.continuity_enabled else None
        prompt = segment.text + CONTINUITY_INSTRUCTION if frame is not None else segment.text
        return GenerationRequest(
            prompt=prompt,
            reference_image=frame.data if frame is not None else None,
            duration=segment.duration,
            name=segment.name,
            reference_segment_id=frame.source_segment_id if frame is not None else None,
        )

    async def _generate(self, segment: Segment) -> bool:
        with log_context(run_id=self.run_id, segment_id=segment.id, stage="generate"):
            request = self._requests.get(segment.id)
            if request is None:
                request = self._build_request(segment)
                self._requests[segment.id] = request
            self._attempts[segment.id] = self._attempts.get(segment.id, 0) + 1

            self._transition(segment, QUEUED)
            self._transition(segment, GENERATING)
            try:
                clip = await asyncio.wait_for(
                    self.generator.generate(
                        request.prompt, request.reference_image, request.duration, request.name
                    ),
                    timeout=self.generation_timeout,
                )
            except asyncio.TimeoutError:
                self._fail(segment, "timeout")
                return False
            except asyncio.CancelledError:
                self._fail(segment, "cancelled")
                self._finish(RunStatus.CANCELLED)
                raise
            except Exception as exc:
                self._fail(segment, str(exc) or type(exc).__name__)
                return False

            try:
                self.storage.save(clip)
            except Exception as exc:
                logger.error(f"Failed to save clip for {segment.name}: {exc}")
                self._discard(clip)
                self._fail(segment, f"storage: {exc}")
                return False
            self.collection.attach_clip(segment.id, clip)
            self._emit("clip_ready", segment, clip_path=clip.path, clip_id=clip.clip_id)

        if self.continuity_enabled and self.extractor is not None and segment.next_segment_id is not None:
            await self._extract(segment, clip)

        self._transition(segment, COMPLETED)
        return True

    async def _extract(self, segment: Segment, clip: ClipHandle) -> None:
        with log_context(run_id=self.run_id, segment_id=segment.id, stage="extract_frame"):
            self._transition(segment, EXTRACTING_FRAME)
            try:
                frame = await self.extractor.extract_frame(clip, segment_id=segment.id)
            except asyncio.CancelledError:
                self._transition(segment, COMPLETED)
                self._finish(RunStatus.CANCELLED)
                raise
            if frame is None:
                self._emit("frame_missing", segment, message="Next segment will not have a continuity anchor")
            self.collection.update_segment_last_frame(segment.id, frame)

    # ---- helpers ----

    def _halted_segment(self) -> Segment:
        segment = self.cursor
        if self.status is not RunStatus.HALTED_ON_ERROR or segment is None:
            raise RunStateError(f"Run {self.run_id} is not halted on an error ({self.status.value})")
        return segment

    def _move_cursor(self, segment: Optional[Segment]) -> None:
        # Segments ordered before the cursor can no longer be edited.
        self._cursor = segment.id if segment is not None else None
        self.collection.advance(segment.order if segment is not None else self.collection.count)

    def _discard(self, clip: ClipHandle) -> None:
        try:
            self.storage.remove_if_exists(clip)
        except Exception as exc:
            logger.warning(f"Failed to remove partial clip {clip.clip_id}: {exc}")

    def _fail(self, segment: Segment, reason: str) -> None:
        self.last_error = f"{segment.name}: {reason}"
        logger.error(f"Generation failed for {segment.name}: {reason}")
        self._transition(segment, GenerationState.failed(reason))

    def _transition(self, segment: Segment, state: GenerationState) -> None:
        self.collection.update_segment_state(segment.id, state)
        self._emit("segment_state", segment)

    def _set_status(self, status: RunStatus) -> None:
        if status not in RUN_TRANSITIONS[self.status]:
            raise RunStateError(f"Invalid run transition {self.status.value} -> {status.value}")
        self.status = status

    def _finish(self, status: RunStatus) -> None:
        self._set_status(status)
        self.collection.end_run()
        logger.info(f"Run {self.run_id} {status.value} (progress {self.progress:.0%})")
        self._emit(f"run_{status.value}")

    def _emit(self, event_type: str, segment: Optional[Segment] = None, **extra) -> None:
        if not self._listeners:
            return
        event = RunEvent(
            type=event_type,
            run_id=self.run_id,
            segment_id=segment.id if segment else None,
            order=segment.order if segment else None,
            state=str(segment.generation_state) if segment else None,
            progress=self.progress,
            **extra,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.warning(f"Run event listener failed on {event_type}: {exc}")
