import re
from typing import Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mediarelay.configs import settings
from mediarelay.const import DEFAULT_RANGE
from mediarelay.utils.http_utils import host_matches

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")


def validate_target_url(url: str) -> str:
    """
    Check that a URL is absolute http(s) and points at an allow-listed media host.

    Raises:
        ValueError: If the URL is malformed or the host is not allowed.
    """
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError("url must be an absolute http(s) URL")
    if not host_matches(parsed.hostname, settings.allowed_media_hosts):
        raise ValueError(f"host {parsed.hostname} is not allowed")
    return url


class GenericParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MediaURLParams(GenericParams):
    url: str = Field(..., description="Absolute URL of the upstream media resource or manifest.")

    @field_validator("url")
    def validate_url(cls, value: str):
        return validate_target_url(value)


class ResolveParams(GenericParams):
    video_id: str = Field(..., description="Platform video identifier.", alias="id")

    @field_validator("video_id")
    def validate_video_id(cls, value: str):
        if not VIDEO_ID_PATTERN.fullmatch(value):
            raise ValueError("id must be 11 characters of [A-Za-z0-9_-]")
        return value


class StreamRequest(BaseModel):
    """One outbound relay request. Built per inbound request and never mutated."""

    model_config = ConfigDict(frozen=True)

    target_url: str
    range: str = DEFAULT_RANGE
    headers: Dict[str, str] = Field(default_factory=dict)


class ResolvedMedia(BaseModel):
    video: str = Field(..., description="Direct URL of the video stream.")
    audio: str = Field(..., description="Direct URL of the audio stream, equal to video for muxed formats.")
    source: str = Field(..., description="Name of the resolver that produced the URLs.")


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
