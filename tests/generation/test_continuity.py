import asyncio
from unittest.mock import MagicMock, patch

import numpy as np

from scenechain.generation.continuity import (
    CONTINUITY_SAMPLE_FRACTION,
    ContinuityExtractor,
    OpenCVFrameDecoder,
    encode_jpeg,
)
from scenechain.segments.models import ClipHandle


class RecordingDecoder:
    def __init__(self, result="image"):
        self.result = result
        self.calls = []

    def sample_frame(self, media_handle, at_fraction):
        self.calls.append((media_handle, at_fraction))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _clip(duration=10.0):
    return ClipHandle(clip_id="c1", path="/tmp/clip.mp4", duration=duration, name="Segment_1")


def test_extract_frame_samples_near_the_end():
    decoder = RecordingDecoder()
    extractor = ContinuityExtractor(decoder, encoder=lambda image: b"jpeg-bytes")

    frame = asyncio.run(extractor.extract_frame(_clip(), segment_id="seg-1"))

    assert decoder.calls == [("/tmp/clip.mp4", CONTINUITY_SAMPLE_FRACTION)]
    assert frame.data == b"jpeg-bytes"
    assert frame.image == "image"
    assert frame.source_segment_id == "seg-1"
    assert frame.sampled_at == 9.0
    assert frame.mime_type == "image/jpeg"


def test_extract_frame_custom_fraction():
    decoder = RecordingDecoder()
    extractor = ContinuityExtractor(decoder, encoder=lambda image: b"x")
    asyncio.run(extractor.extract_frame(_clip(), at_fraction=0.5))
    assert decoder.calls[0][1] == 0.5


def test_zero_length_clip_has_no_frame():
    decoder = RecordingDecoder()
    extractor = ContinuityExtractor(decoder, encoder=lambda image: b"x")
    assert asyncio.run(extractor.extract_frame(_clip(duration=0))) is None
    assert decoder.calls == []


def test_undecodable_clip_has_no_frame():
    extractor = ContinuityExtractor(RecordingDecoder(result=None), encoder=lambda image: b"x")
    assert asyncio.run(extractor.extract_frame(_clip())) is None


def test_decoder_errors_become_missing_frame():
    extractor = ContinuityExtractor(RecordingDecoder(result=RuntimeError("corrupt")), encoder=lambda image: b"x")
    assert asyncio.run(extractor.extract_frame(_clip())) is None


def test_encoder_errors_become_missing_frame():
    def broken(image):
        raise ValueError("JPEG encoding failed")

    extractor = ContinuityExtractor(RecordingDecoder(), encoder=broken)
    assert asyncio.run(extractor.extract_frame(_clip())) is None


def test_invalid_fraction_rejected():
    try:
        ContinuityExtractor(RecordingDecoder(), at_fraction=1.5)
    except ValueError as exc:
        assert "at_fraction" in str(exc)
    else:
        raise AssertionError("expected ValueError")


@patch("scenechain.generation.continuity.cv2.VideoCapture")
def test_opencv_decoder_seeks_to_fraction(mock_capture):
    cap = MagicMock()
    cap.isOpened.return_value = True
    cap.get.return_value = 100
    cap.read.return_value = (True, "frame")
    mock_capture.return_value = cap

    result = OpenCVFrameDecoder().sample_frame("/tmp/clip.mp4", 0.9)

    assert result == "frame"
    cap.set.assert_called_once()
    assert cap.set.call_args[0][1] == 90
    cap.release.assert_called_once()


@patch("scenechain.generation.continuity.cv2.VideoCapture")
def test_opencv_decoder_handles_unopenable_video(mock_capture):
    cap = MagicMock()
    cap.isOpened.return_value = False
    mock_capture.return_value = cap

    assert OpenCVFrameDecoder().sample_frame("/missing.mp4", 0.9) is None
    cap.release.assert_called_once()


@patch("scenechain.generation.continuity.cv2.VideoCapture")
def test_opencv_decoder_clamps_to_last_frame(mock_capture):
    cap = MagicMock()
    cap.isOpened.return_value = True
    cap.get.return_value = 10
    cap.read.return_value = (False, None)
    mock_capture.return_value = cap

    assert OpenCVFrameDecoder().sample_frame("/tmp/clip.mp4", 1.0) is None
    assert cap.set.call_args[0][1] == 9


def test_encode_jpeg_produces_jpeg_bytes():
    image = np.zeros((16, 16, 3), dtype=np.uint8)
    data = encode_jpeg(image)
    assert data[:2] == b"\xff\xd8"
