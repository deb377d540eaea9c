import logging
from urllib.parse import urlencode

import httpx
import tenacity
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from .configs import settings
from .const import DEFAULT_MEDIA_TYPE, DEFAULT_MIRROR_MEDIA_TYPE, MANIFEST_MEDIA_TYPE
from .errors import AllInstancesFailed, RelayError
from .resolvers import ResolverFactory
from .schemas import ResolvedMedia, StreamRequest
from .utils.http_utils import (
    ClientDisconnected,
    DownloadError,
    EnhancedStreamingResponse,
    ProxyRequestHeaders,
    Streamer,
    create_httpx_client,
    download_text,
    run_until_disconnect,
)
from .utils.m3u8_processor import ManifestRewriter
from .utils.mirror_client import MirrorFailoverClient

logger = logging.getLogger(__name__)


async def setup_client_and_streamer() -> tuple[httpx.AsyncClient, Streamer]:
    """
    Set up an HTTP client and a streamer.

    Returns:
        tuple: An httpx.AsyncClient instance and a Streamer instance.
    """
    client = create_httpx_client()
    return client, Streamer(client)


def handle_exceptions(exception: Exception, error: str = "relay_failed", message: str = "Relay failed") -> Response:
    """
    Translate a failure into a JSON error response without exposing upstream details.

    Args:
        exception (Exception): The exception that was raised.
        error (str): Error code reported for unexpected failures.
        message (str): Human readable message reported for unexpected failures.

    Returns:
        Response: A JSON error response.
    """
    if isinstance(exception, RelayError):
        return JSONResponse(exception.to_dict(), status_code=exception.status_code)
    if isinstance(exception, httpx.HTTPStatusError):
        logger.error(f"Upstream responded with {exception.response.status_code}: {exception.request.url}")
    elif isinstance(exception, DownloadError):
        logger.error(f"Error downloading content: {exception}")
    elif isinstance(exception, tenacity.RetryError):
        logger.error("Max retries exceeded while downloading content")
    elif isinstance(exception, httpx.HTTPError):
        logger.error(f"Upstream request failed: {exception!r}")
    else:
        logger.exception(f"Internal server error while handling request: {exception}")
    return JSONResponse({"error": error, "message": message}, status_code=500)


def prepare_relay_headers(upstream_headers: httpx.Headers, requested_range: str) -> dict:
    """
    Select the headers sent back to the client, filling in defaults for the ones upstream left out.

    Args:
        upstream_headers (httpx.Headers): The headers of the upstream response.
        requested_range (str): The range that was asked for, echoed when upstream sends no content-range.

    Returns:
        dict: The relay response headers.
    """
    response_headers = {
        "content-type": upstream_headers.get("content-type", DEFAULT_MEDIA_TYPE),
        "accept-ranges": "bytes",
        "content-range": upstream_headers.get("content-range", requested_range),
    }
    if "content-length" in upstream_headers:
        response_headers["content-length"] = upstream_headers["content-length"]
    return response_headers


def build_outbound_headers(proxy_headers: dict, extra: dict | None = None) -> dict:
    headers = {**proxy_headers, "user-agent": settings.user_agent, **(extra or {})}
    headers.update(settings.relay_extra_headers)
    return headers


async def handle_relay_request(method: str, stream_request: StreamRequest) -> Response:
    """
    Relay a (range) request to the media URL and stream the upstream body back unchanged.

    Args:
        method (str): The HTTP method, 'GET' or 'HEAD'.
        stream_request (StreamRequest): Target URL, requested range and forwarded headers.

    Returns:
        Response: A streaming response, a header-only response for HEAD, or a JSON error.
    """
    _, streamer = await setup_client_and_streamer()
    headers = build_outbound_headers(
        stream_request.headers, {"range": stream_request.range, "accept-encoding": "identity"}
    )

    try:
        await streamer.create_streaming_response(stream_request.target_url, headers)
        upstream = streamer.response

        if upstream.is_error:
            logger.warning(f"Upstream answered {upstream.status_code} for {stream_request.target_url}")
            await streamer.close()
            return JSONResponse(
                {"error": "upstream_error", "message": f"Upstream responded with status {upstream.status_code}"},
                status_code=upstream.status_code,
            )

        response_headers = prepare_relay_headers(upstream.headers, stream_request.range)

        if method == "HEAD":
            await streamer.close()
            return Response(headers=response_headers, status_code=upstream.status_code)

        return EnhancedStreamingResponse(
            streamer.stream_content(),
            status_code=upstream.status_code,
            headers=response_headers,
            background=BackgroundTask(streamer.close),
        )
    except Exception as e:
        await streamer.close()
        return handle_exceptions(e)


async def handle_manifest_request(request: Request, target_url: str, proxy_headers: ProxyRequestHeaders) -> Response:
    """
    Fetch a streaming playlist and route its hosting-domain URLs through this service.

    Args:
        request (Request): The incoming request, used to build same-origin endpoint paths.
        target_url (str): The URL of the playlist.
        proxy_headers (ProxyRequestHeaders): The inbound headers that may be forwarded.

    Returns:
        Response: The rewritten playlist, or a JSON error.
    """
    request_headers = {k: v for k, v in proxy_headers.request.items() if k not in ("range", "if-range")}
    root_path = request.scope.get("root_path", "")
    rewriter = ManifestRewriter(
        relay_path=root_path + request.app.url_path_for("relay_media"),
        manifest_path=root_path + request.app.url_path_for("manifest_proxy"),
        domains=settings.manifest_rewrite_domains,
    )

    try:
        content = await download_text(target_url, build_outbound_headers(request_headers))
        rewritten = rewriter.rewrite(content)
    except Exception as e:
        return handle_exceptions(e, "manifest_failed", "Manifest proxy failed")

    return Response(content=rewritten, media_type=MANIFEST_MEDIA_TYPE)


async def handle_mirror_request(subpath: str, query_params: list[tuple[str, str]]) -> Response:
    """
    Forward a request to the first mirror instance that answers successfully.

    Args:
        subpath (str): Path below the mirror instance base URL.
        query_params (list): Query parameters to forward.

    Returns:
        Response: The streamed mirror response, or 503 when every instance failed.
    """
    client = create_httpx_client(timeout=settings.mirror_timeout)
    mirror = MirrorFailoverClient(client)

    try:
        response = await mirror.open(subpath, urlencode(query_params))
    except AllInstancesFailed as e:
        await client.aclose()
        logger.error(f"All {len(mirror.instances)} mirror instances failed for /{subpath}")
        return JSONResponse(e.to_dict(), status_code=e.status_code)

    streamer = Streamer(client, raw=False)
    streamer.response = response
    return EnhancedStreamingResponse(
        streamer.stream_content(),
        status_code=response.status_code,
        headers={"content-type": response.headers.get("content-type", DEFAULT_MIRROR_MEDIA_TYPE)},
        background=BackgroundTask(streamer.close),
    )


async def handle_resolve_request(request: Request, video_id: str) -> ResolvedMedia | Response:
    """
    Resolve a video identifier into direct media URLs.

    The resolver runs as a subprocess awaited off the request path; it is killed if the client disconnects.

    Raises:
        ResolutionError: If the resolver fails; rendered as JSON by the application's error handler.
    """
    resolver = ResolverFactory.get_resolver(settings.resolver)
    try:
        return await run_until_disconnect(request, resolver.resolve(video_id))
    except ClientDisconnected:
        logger.info(f"Client disconnected while resolving {video_id}")
        return Response(status_code=499)
