from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import cv2

from scenechain.generation.capabilities import FrameDecoder
from scenechain.segments.models import ClipHandle, ContinuityFrame
from scenechain.utils.base import setup_logger

logger = setup_logger(__name__)

# Sampling just before the end avoids fades and end-of-clip artifacts.
CONTINUITY_SAMPLE_FRACTION = 0.9
JPEG_QUALITY = 90


class OpenCVFrameDecoder:
    def sample_frame(self, media_handle: str, at_fraction: float) -> Optional[Any]:
        cap = cv2.VideoCapture(media_handle)
        try:
            if not cap.isOpened():
                logger.warning(f"Could not open video: {media_handle}")
                return None
            total_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
            if total_frames <= 0:
                return None
            index = min(total_frames - 1, max(0, int(total_frames * at_fraction)))
            cap.set(cv2.CAP_PROP_POS_FRAMES, index)
            ok, frame = cap.read()
            return frame if ok else None
        finally:
            cap.release()


def encode_jpeg(image: Any, quality: int = JPEG_QUALITY) -> bytes:
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return buffer.tobytes()


class ContinuityExtractor:
    """Samples a still from a finished clip to anchor the next clip visually."""

    def __init__(
        self,
        decoder: Optional[FrameDecoder] = None,
        encoder: Callable[[Any], bytes] = encode_jpeg,
        at_fraction: float = CONTINUITY_SAMPLE_FRACTION,
    ):
        if not 0.0 <= at_fraction <= 1.0:
            raise ValueError(f"at_fraction must be within [0, 1], got {at_fraction}")
        self.decoder = decoder or OpenCVFrameDecoder()
        self.encoder = encoder
        self.at_fraction = at_fraction

    async def extract_frame(
        self,
        clip: ClipHandle,
        at_fraction: Optional[float] = None,
        segment_id: Optional[str] = None,
    ) -> Optional[ContinuityFrame]:
        """
        Returns None when the frame cannot be produced; callers continue without an anchor.

        Decoding and encoding run in a worker thread so the event loop stays responsive.
        """
        fraction = self.at_fraction if at_fraction is None else at_fraction
        if clip.duration <= 0:
            logger.warning(f"Skipping continuity frame for zero-length clip {clip.clip_id}")
            return None
        try:
            image = await asyncio.to_thread(self.decoder.sample_frame, clip.path, fraction)
            if image is None:
                logger.warning(f"No frame decoded from {clip.path} at {fraction:.2f}")
                return None
            data = await asyncio.to_thread(self.encoder, image)
        except Exception as exc:
            logger.warning(f"Failed to extract continuity frame from {clip.path}: {exc}")
            return None
        return ContinuityFrame(
            image=image,
            data=data,
            source_segment_id=segment_id,
            sampled_at=clip.duration * fraction,
        )
