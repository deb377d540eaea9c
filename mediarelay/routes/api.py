from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Path, Query

from mediarelay.metadata import MetadataClient, get_metadata_client
from mediarelay.schemas import VIDEO_ID_PATTERN

api_router = APIRouter()

VideoId = Annotated[str, Path(pattern=VIDEO_ID_PATTERN.pattern)]
ChannelId = Annotated[str, Path(pattern=r"^UC[A-Za-z0-9_-]{22}$")]
Client = Annotated[MetadataClient, Depends(get_metadata_client)]


@api_router.get("/trending")
async def trending(
    client: Client,
    region: Annotated[str, Query(pattern=r"^[A-Z]{2}$")] = "JP",
    limit: Annotated[Optional[int], Query(ge=1, le=100)] = None,
):
    """Trending videos for a region."""
    return await client.trending(region, limit)


@api_router.get("/search")
async def search(
    client: Client,
    q: Annotated[str, Query(min_length=1)],
    continuation: Optional[str] = None,
):
    """Search videos. Pass the returned nextPageToken back as `continuation` for the next page."""
    return await client.search(q, continuation)


@api_router.get("/related")
async def related(
    client: Client,
    video_id: Annotated[str, Query(alias="id", pattern=VIDEO_ID_PATTERN.pattern)],
):
    return await client.related(video_id)


@api_router.get("/video/{video_id}")
async def video_info(client: Client, video_id: VideoId):
    """Video details with channel information and related videos."""
    return await client.video_info(video_id)


@api_router.get("/comments/{video_id}")
async def comments(client: Client, video_id: VideoId, continuation: Optional[str] = None):
    return await client.comments(video_id, continuation)


@api_router.get("/channel/{channel_id}")
async def channel(client: Client, channel_id: ChannelId, continuation: Optional[str] = None):
    """Channel header and one page of its uploads."""
    return await client.channel(channel_id, continuation)
