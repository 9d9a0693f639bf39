import pytest

from scenechain.generation.storage import LocalClipStorage
from scenechain.segments.models import ClipHandle


def _clip(path, name="Segment_1"):
    return ClipHandle(clip_id="abc123", path=str(path), duration=5.0, name=name)


def test_save_copies_clip_into_output_dir(tmp_path):
    source = tmp_path / "render.mp4"
    source.write_bytes(b"video")
    storage = LocalClipStorage(tmp_path / "out")
    clip = _clip(source)

    storage.save(clip)

    target = tmp_path / "out" / "Segment_1.mp4"
    assert target.read_bytes() == b"video"
    assert clip.metadata["stored_path"] == str(target)


def test_save_missing_source_raises(tmp_path):
    storage = LocalClipStorage(tmp_path / "out")
    with pytest.raises(FileNotFoundError):
        storage.save(_clip(tmp_path / "nope.mp4"))


def test_remove_if_exists(tmp_path):
    source = tmp_path / "render.mp4"
    source.write_bytes(b"video")
    storage = LocalClipStorage(tmp_path / "out")
    clip = _clip(source)
    storage.save(clip)

    storage.remove_if_exists(clip)
    storage.remove_if_exists(clip)

    assert not (tmp_path / "out" / "Segment_1.mp4").exists()
    assert "stored_path" not in clip.metadata


def test_path_for_falls_back_to_clip_id(tmp_path):
    storage = LocalClipStorage(tmp_path)
    clip = ClipHandle(clip_id="abc123", path="/tmp/render", duration=5.0)
    assert storage.path_for(clip) == tmp_path / "abc123.mp4"
