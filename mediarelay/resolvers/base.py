from abc import ABC, abstractmethod
from typing import List

from mediarelay.errors import ResolutionError
from mediarelay.schemas import ResolvedMedia


class BaseResolver(ABC):
    """Base class for resolvers turning a video identifier into direct media URLs."""

    name: str = "resolver"

    def build_result(self, lines: List[str]) -> ResolvedMedia:
        """
        Turn the resolved URL lines into a ResolvedMedia.

        The first line is the video stream and the second the audio stream. A single line
        means a muxed format, so both fields point at it.

        Raises:
            ResolutionError: If no URL was produced.
        """
        urls = [line.strip() for line in lines if line.strip().startswith(("http://", "https://"))]
        if not urls:
            raise ResolutionError("Failed to extract URLs")
        video_url = urls[0]
        audio_url = urls[1] if len(urls) > 1 else video_url
        return ResolvedMedia(video=video_url, audio=audio_url, source=self.name)

    @abstractmethod
    async def resolve(self, video_id: str) -> ResolvedMedia:
        """Resolve a validated video identifier."""
        pass
