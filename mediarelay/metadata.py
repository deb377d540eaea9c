"""
Metadata lookups (trending, search, video details, comments, channels) served from Piped mirror instances.

The responses are reshaped into the structure the player UI consumes. Continuation tokens are opaque
values handed back by the instances and passed through unchanged.
"""

import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from mediarelay.configs import settings
from mediarelay.errors import NotReadyError
from mediarelay.utils.http_utils import create_httpx_client
from mediarelay.utils.mirror_client import MirrorFailoverClient

logger = logging.getLogger(__name__)


def _video_id(url: Optional[str]) -> str:
    if not isinstance(url, str) or not url:
        return ""
    return parse_qs(urlparse(url).query).get("v", [""])[0]


def _channel_id(url: Optional[str]) -> str:
    if not isinstance(url, str) or not url:
        return ""
    return url.rstrip("/").rsplit("/", 1)[-1]


def _count(value: Any) -> str:
    if isinstance(value, int):
        return str(max(value, 0))
    return re.sub(r"\D", "", str(value or "")) or "0"


def _dict_items(items: Any) -> List[dict]:
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _stream_items(items: Any) -> List[dict]:
    return [item for item in _dict_items(items) if item.get("type", "stream") == "stream"]


def _video_snippet(item: dict) -> dict:
    return {
        "title": item.get("title") or "",
        "channelTitle": item.get("uploaderName") or "",
        "channelId": _channel_id(item.get("uploaderUrl")),
        "thumbnails": {"medium": {"url": item.get("thumbnail") or ""}},
        "publishedAt": item.get("uploadedDate") or "",
    }


def normalize_trending_item(item: dict) -> dict:
    return {
        "id": _video_id(item.get("url")),
        "snippet": _video_snippet(item),
        "statistics": {"viewCount": _count(item.get("views"))},
    }


def normalize_search_item(item: dict) -> dict:
    return {"id": {"videoId": _video_id(item.get("url"))}, "snippet": _video_snippet(item)}


def normalize_related_item(item: dict) -> dict:
    return {
        "id": _video_id(item.get("url")),
        "title": item.get("title") or "",
        "author": item.get("uploaderName") or "",
        "thumbnails": [{"url": item["thumbnail"]}] if item.get("thumbnail") else [],
        "viewCount": _count(item.get("views")),
    }


def normalize_channel_video(item: dict) -> dict:
    return {
        "id": _video_id(item.get("url")),
        "title": item.get("title") or "",
        "thumbnails": {"medium": {"url": item.get("thumbnail") or ""}},
        "publishedAt": item.get("uploadedDate") or "",
        "viewCount": _count(item.get("views")),
    }


def normalize_comment(comment: dict) -> dict:
    return {
        "author": {
            "name": comment.get("author") or "Anonymous",
            "thumbnails": [{"url": comment["thumbnail"]}] if comment.get("thumbnail") else [],
        },
        "content": comment.get("commentText") or "",
        "published": comment.get("commentedTime") or "",
    }


class MetadataClient:
    def __init__(self, mirror: MirrorFailoverClient):
        self.mirror = mirror

    async def trending(self, region: str = "JP", limit: Optional[int] = None) -> Dict[str, Any]:
        videos = _stream_items(await self.mirror.get_json("trending", {"region": region}, expected=list))
        if limit is not None:
            videos = videos[:limit]
        return {"items": [normalize_trending_item(v) for v in videos], "nextPageToken": None}

    async def search(self, query: str, continuation: Optional[str] = None) -> Dict[str, Any]:
        params = {"q": query, "filter": "videos"}
        if continuation:
            data = await self.mirror.get_json("nextpage/search", {**params, "nextpage": continuation})
        else:
            data = await self.mirror.get_json("search", params)
        return {
            "items": [normalize_search_item(v) for v in _stream_items(data.get("items"))],
            "nextPageToken": data.get("nextpage"),
        }

    async def related(self, video_id: str) -> Dict[str, Any]:
        data = await self.mirror.get_json(f"streams/{video_id}")
        return {"items": [normalize_search_item(v) for v in _stream_items(data.get("relatedStreams"))]}

    async def video_info(self, video_id: str) -> Dict[str, Any]:
        data = await self.mirror.get_json(f"streams/{video_id}")
        avatar = data.get("uploaderAvatar")
        return {
            "title": data.get("title") or "",
            "description": data.get("description") or "",
            "viewCount": _count(data.get("views")),
            "published": data.get("uploadDate") or "",
            "likeCount": _count(data.get("likes")),
            "channel": {
                "id": _channel_id(data.get("uploaderUrl")),
                "name": data.get("uploader") or "",
                "thumbnails": [{"url": avatar}] if avatar else [],
                "subscriberCount": _count(data.get("uploaderSubscriberCount")),
            },
            "related": [normalize_related_item(v) for v in _stream_items(data.get("relatedStreams"))],
        }

    async def comments(self, video_id: str, continuation: Optional[str] = None) -> Dict[str, Any]:
        if continuation:
            data = await self.mirror.get_json(f"nextpage/comments/{video_id}", {"nextpage": continuation})
        else:
            data = await self.mirror.get_json(f"comments/{video_id}")
        return {
            "comments": [normalize_comment(c) for c in _dict_items(data.get("comments"))],
            "nextContinuation": data.get("nextpage"),
        }

    async def channel(self, channel_id: str, continuation: Optional[str] = None) -> Dict[str, Any]:
        if continuation:
            data = await self.mirror.get_json(f"nextpage/channel/{channel_id}", {"nextpage": continuation})
        else:
            data = await self.mirror.get_json(f"channel/{channel_id}")
        return {
            "title": data.get("name") or "",
            "description": data.get("description") or "",
            "avatar": data.get("avatarUrl") or "",
            "subscribers": _count(data.get("subscriberCount")),
            "videos": [normalize_channel_video(v) for v in _stream_items(data.get("relatedStreams"))],
            "nextContinuation": data.get("nextpage"),
        }

    async def aclose(self):
        await self.mirror.client.aclose()


class ClientState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class MetadataClientHolder:
    """Process-wide holder of the shared MetadataClient, created once during application startup."""

    def __init__(self):
        self._client: Optional[MetadataClient] = None
        self.state = ClientState.PENDING

    async def initialize(self) -> None:
        if not settings.mirror_instances:
            self.state = ClientState.FAILED
            logger.error("No mirror instances configured, metadata endpoints are disabled")
            return
        try:
            http_client = create_httpx_client(timeout=settings.mirror_timeout)
        except ValueError as e:
            self.state = ClientState.FAILED
            logger.error(f"Metadata client init failed: {e}")
            return
        self._client = MetadataClient(MirrorFailoverClient(http_client))
        self.state = ClientState.READY
        logger.info(f"Metadata client ready with {len(settings.mirror_instances)} mirror instances")

    def get(self) -> MetadataClient:
        """
        Return the client, failing fast when startup has not completed.

        Raises:
            NotReadyError: If the client is not initialized.
        """
        if self.state is not ClientState.READY or self._client is None:
            raise NotReadyError(f"Metadata client not ready ({self.state.value})")
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.state = ClientState.CLOSED


metadata_holder = MetadataClientHolder()


def get_metadata_client() -> MetadataClient:
    return metadata_holder.get()
