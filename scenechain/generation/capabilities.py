"""Collaborator interfaces the orchestrator drives. Concrete backends live outside this package."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from scenechain.segments.models import ClipHandle


class GenerationCapability(Protocol):
    async def generate(
        self,
        prompt: str,
        reference_image: Optional[bytes],
        duration: float,
        name: str,
    ) -> ClipHandle:
        """Generate one clip. Raises on backend, quota, network or content-policy errors."""
        ...


class StorageCollaborator(Protocol):
    def save(self, clip: ClipHandle) -> None:
        ...

    def remove_if_exists(self, clip: ClipHandle) -> None:
        ...


class FrameDecoder(Protocol):
    def sample_frame(self, media_handle: str, at_fraction: float) -> Optional[Any]:
        """Return the decoded frame at ``at_fraction`` of the media's length, or None."""
        ...
