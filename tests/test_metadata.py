import httpx
import pytest
from fastapi.testclient import TestClient

from mediarelay.main import app
from mediarelay.metadata import (
    ClientState,
    MetadataClientHolder,
    metadata_holder,
    normalize_comment,
    normalize_related_item,
    normalize_trending_item,
)

CHANNEL_ID = "UCuAXFkgsw1L7xaCfnd5JJOw"

PIPED_STREAM = {
    "type": "stream",
    "url": "/watch?v=dQw4w9WgXcQ",
    "title": "Never Gonna Give You Up",
    "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg",
    "uploaderName": "Rick Astley",
    "uploaderUrl": f"/channel/{CHANNEL_ID}",
    "uploadedDate": "15 years ago",
    "views": 1500000000,
}
PIPED_CHANNEL_ITEM = {"type": "channel", "url": f"/channel/{CHANNEL_ID}", "name": "Rick Astley"}


def test_trending_item_shape():
    assert normalize_trending_item(PIPED_STREAM) == {
        "id": "dQw4w9WgXcQ",
        "snippet": {
            "title": "Never Gonna Give You Up",
            "channelTitle": "Rick Astley",
            "channelId": CHANNEL_ID,
            "thumbnails": {"medium": {"url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg"}},
            "publishedAt": "15 years ago",
        },
        "statistics": {"viewCount": "1500000000"},
    }


def test_related_item_with_missing_fields():
    item = normalize_related_item({"url": "/watch?v=abcdefghijk", "views": -1})

    assert item == {"id": "abcdefghijk", "title": "", "author": "", "thumbnails": [], "viewCount": "0"}


def test_comment_without_author_is_anonymous():
    comment = normalize_comment({"commentText": "great", "commentedTime": "1 day ago"})

    assert comment["author"] == {"name": "Anonymous", "thumbnails": []}
    assert comment["content"] == "great"


def test_endpoints_fail_fast_before_startup(client, monkeypatch, mock_upstream):
    requests = mock_upstream(lambda request: httpx.Response(200, json=[]))
    monkeypatch.setattr(metadata_holder, "state", ClientState.PENDING)
    monkeypatch.setattr(metadata_holder, "_client", None)

    response = client.get("/api/trending")

    assert response.status_code == 503
    assert response.json()["error"] == "not_ready"
    assert requests == []


@pytest.mark.asyncio
async def test_holder_without_instances_is_failed(monkeypatch):
    from mediarelay.configs import settings

    monkeypatch.setattr(settings, "mirror_instances", [])
    holder = MetadataClientHolder()

    await holder.initialize()

    assert holder.state is ClientState.FAILED


def test_trending_keeps_only_videos_and_applies_limit(mock_upstream):
    second = {**PIPED_STREAM, "url": "/watch?v=abcdefghijk"}
    requests = mock_upstream(lambda request: httpx.Response(200, json=[PIPED_CHANNEL_ITEM, PIPED_STREAM, second]))

    with TestClient(app) as client:
        response = client.get("/api/trending", params={"region": "US", "limit": 1})

    assert response.status_code == 200
    body = response.json()
    assert [item["id"] for item in body["items"]] == ["dQw4w9WgXcQ"]
    assert body["nextPageToken"] is None
    assert requests[0].url.path == "/trending"
    assert requests[0].url.params["region"] == "US"


def test_search_passes_continuation_through(mock_upstream):
    def handler(request):
        if request.url.path == "/nextpage/search":
            return httpx.Response(200, json={"items": [PIPED_STREAM], "nextpage": None})
        return httpx.Response(200, json={"items": [PIPED_STREAM, PIPED_CHANNEL_ITEM], "nextpage": "opaque-token"})

    requests = mock_upstream(handler)

    with TestClient(app) as client:
        first = client.get("/api/search", params={"q": "rick"}).json()
        second = client.get("/api/search", params={"q": "rick", "continuation": first["nextPageToken"]}).json()

    assert first["nextPageToken"] == "opaque-token"
    assert first["items"] == [
        {
            "id": {"videoId": "dQw4w9WgXcQ"},
            "snippet": normalize_trending_item(PIPED_STREAM)["snippet"],
        }
    ]
    assert second["nextPageToken"] is None
    assert requests[1].url.params["nextpage"] == "opaque-token"


def test_video_info_falls_over_to_next_instance(mock_upstream):
    def handler(request):
        if request.url.host == "mirror-a.example":
            return httpx.Response(500)
        return httpx.Response(
            200,
            json={
                "title": "Never Gonna Give You Up",
                "description": "Official video",
                "views": 10,
                "likes": 2,
                "uploadDate": "2009-10-25",
                "uploader": "Rick Astley",
                "uploaderUrl": f"/channel/{CHANNEL_ID}",
                "uploaderSubscriberCount": 4000000,
                "relatedStreams": [PIPED_STREAM, PIPED_CHANNEL_ITEM],
            },
        )

    mock_upstream(handler)

    with TestClient(app) as client:
        response = client.get("/api/video/dQw4w9WgXcQ")

    assert response.status_code == 200
    body = response.json()
    assert body["channel"]["id"] == CHANNEL_ID
    assert body["channel"]["thumbnails"] == []
    assert body["likeCount"] == "2"
    assert [item["id"] for item in body["related"]] == ["dQw4w9WgXcQ"]


def test_metadata_reports_503_when_every_mirror_fails(mock_upstream):
    mock_upstream(lambda request: httpx.Response(502))

    with TestClient(app) as client:
        response = client.get(f"/api/channel/{CHANNEL_ID}")

    assert response.status_code == 503
    assert response.json()["error"] == "all_instances_failed"


@pytest.mark.parametrize(
    "path",
    ["/api/channel/not-a-channel", "/api/video/short", "/api/comments/dQw4w9WgX%3BQ", "/api/related?id=bad"],
)
def test_malformed_identifiers_are_rejected(mock_upstream, path):
    requests = mock_upstream(lambda request: httpx.Response(200, json={}))

    with TestClient(app) as client:
        response = client.get(path)

    assert response.status_code == 400
    assert requests == []


def test_search_requires_query(mock_upstream):
    mock_upstream(lambda request: httpx.Response(200, json={}))

    with TestClient(app) as client:
        response = client.get("/api/search")

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_error_object_from_mirror_falls_over_to_next_instance(mock_upstream):
    def handler(request):
        if request.url.host == "mirror-a.example":
            return httpx.Response(200, json={"error": "rate limited"})
        return httpx.Response(200, json=[PIPED_STREAM])

    mock_upstream(handler)

    with TestClient(app) as client:
        response = client.get("/api/trending")

    assert response.status_code == 200
    assert [item["id"] for item in response.json()["items"]] == ["dQw4w9WgXcQ"]


def test_unexpected_payload_shape_everywhere_is_a_json_error(mock_upstream):
    mock_upstream(lambda request: httpx.Response(200, json={"error": "rate limited"}))

    with TestClient(app) as client:
        trending = client.get("/api/trending")
        comments = client.get("/api/comments/dQw4w9WgXcQ")

    assert trending.status_code == 503
    assert trending.json()["error"] == "all_instances_failed"
    assert comments.status_code == 200
    assert comments.json() == {"comments": [], "nextContinuation": None}


def test_list_where_object_expected_is_skipped(mock_upstream):
    mock_upstream(lambda request: httpx.Response(200, json=["not", "an", "object"]))

    with TestClient(app) as client:
        response = client.get("/api/video/dQw4w9WgXcQ")

    assert response.status_code == 503
    assert response.json()["error"] == "all_instances_failed"
