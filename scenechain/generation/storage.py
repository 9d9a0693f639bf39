from __future__ import annotations

import shutil
from pathlib import Path

from scenechain.segments.models import ClipHandle
from scenechain.utils.base import setup_logger

logger = setup_logger(__name__)


class LocalClipStorage:
    """Copies generated clips into an output directory, one file per clip name."""

    def __init__(self, output_dir: str | Path):
        self.output_dir = Path(output_dir)

    def path_for(self, clip: ClipHandle) -> Path:
        suffix = Path(clip.path).suffix or ".mp4"
        return self.output_dir / f"{clip.name or clip.clip_id}{suffix}"

    def save(self, clip: ClipHandle) -> None:
        source = Path(clip.path)
        if not source.exists():
            raise FileNotFoundError(f"Generated clip not found: {source}")
        self.output_dir.mkdir(parents=True, exist_ok=True)
        target = self.path_for(clip)
        if source.resolve() != target.resolve():
            shutil.copy2(source, target)
        clip.metadata["stored_path"] = str(target)
        logger.info(f"Saved clip {clip.clip_id} to {target}")

    def remove_if_exists(self, clip: ClipHandle) -> None:
        target = self.path_for(clip)
        if target.exists():
            target.unlink()
            logger.info(f"Removed clip file {target}")
        clip.metadata.pop("stored_path", None)
