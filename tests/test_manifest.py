import re
from urllib.parse import quote

import httpx

from mediarelay.utils.m3u8_processor import ManifestRewriter

SEGMENT = "https://rr1---sn-q4f.googlevideo.com/videoplayback/id/abc/itag/136/sq/1/file/seg.ts"
VARIANT = "https://manifest.googlevideo.com/api/manifest/hls_playlist/expire/1/id/abc/itag/136/playlist/index.m3u8"
OTHER = "https://i.ytimg.com/vi/abc/hqdefault.jpg"

MASTER = f"""#EXTM3U
#EXT-X-INDEPENDENT-SEGMENTS
#EXT-X-STREAM-INF:BANDWIDTH=1280000,RESOLUTION=1280x720
{VARIANT}
#EXTINF:5.0,
{SEGMENT}
#EXT-X-IMAGE:{OTHER}
#EXTINF:5.0,
https://googlevideo.com.attacker.example/videoplayback/seg.ts
https://evilgooglevideo.com/videoplayback/seg.ts
"""


def make_rewriter():
    return ManifestRewriter("/media/relay", "/media/manifest", ["googlevideo.com"])


def test_segments_are_routed_through_relay():
    output = make_rewriter().rewrite(MASTER)

    assert f"/media/relay?url={quote(SEGMENT, safe='')}" in output


def test_nested_playlists_reenter_manifest_endpoint():
    output = make_rewriter().rewrite(MASTER)

    assert f"/media/manifest?url={quote(VARIANT, safe='')}" in output


def test_no_cdn_url_is_left_unrewritten():
    output = make_rewriter().rewrite(MASTER)

    remaining = re.findall(r"https?://[^\s\"']+", output)
    assert all(not url.split("/")[2].endswith(".googlevideo.com") for url in remaining)


def test_foreign_and_decoy_urls_are_byte_identical():
    output = make_rewriter().rewrite(MASTER)

    assert f"#EXT-X-IMAGE:{OTHER}\n" in output
    assert "\nhttps://googlevideo.com.attacker.example/videoplayback/seg.ts\n" in output
    assert "\nhttps://evilgooglevideo.com/videoplayback/seg.ts\n" in output


def test_quoted_uri_attributes_keep_their_quotes():
    line = f'#EXT-X-MAP:URI="{SEGMENT}"'

    output = make_rewriter().rewrite(line)

    assert output == f'#EXT-X-MAP:URI="/media/relay?url={quote(SEGMENT, safe="")}"'


def test_document_without_matches_is_unchanged():
    text = "#EXTM3U\n#EXTINF:4.0,\nsegment-1.ts\n"

    assert make_rewriter().rewrite(text) == text


def test_manifest_endpoint_serves_rewritten_playlist(client, mock_upstream):
    requests = mock_upstream(
        lambda request: httpx.Response(200, headers={"content-type": "text/plain"}, text=f"#EXTM3U\n{SEGMENT}\n")
    )

    response = client.get("/media/manifest", params={"url": VARIANT}, headers={"Range": "bytes=0-"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/vnd.apple.mpegurl"
    assert response.text == f"#EXTM3U\n/media/relay?url={quote(SEGMENT, safe='')}\n"
    assert "range" not in requests[0].headers


def test_manifest_fetch_failure_returns_500(client, mock_upstream):
    mock_upstream(lambda request: httpx.Response(404, text="not here"))

    response = client.get("/media/manifest", params={"url": VARIANT})

    assert response.status_code == 500
    assert response.json()["error"] == "manifest_failed"


def test_manifest_network_failure_returns_500(client, mock_upstream):
    def fail(request):
        raise httpx.ConnectError("unreachable", request=request)

    mock_upstream(fail)

    response = client.get("/media/manifest", params={"url": VARIANT})

    assert response.status_code == 500
    assert response.json() == {"error": "manifest_failed", "message": "Manifest proxy failed"}


def test_manifest_requires_url(client):
    response = client.get("/media/manifest")

    assert response.status_code == 400
    assert "error" in response.json()
