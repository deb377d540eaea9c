from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from mediarelay.const import DEFAULT_RANGE
from mediarelay.errors import ClientInputError
from mediarelay.handlers import handle_manifest_request, handle_relay_request, handle_resolve_request
from mediarelay.schemas import ErrorResponse, MediaURLParams, ResolveParams, ResolvedMedia, StreamRequest
from mediarelay.utils.http_utils import ProxyRequestHeaders, get_proxy_headers

media_router = APIRouter(responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})


@media_router.get("/resolve", name="resolve_media", response_model=ResolvedMedia)
async def resolve_media(request: Request, params: Annotated[ResolveParams, Query()]):
    """
    Resolve a video identifier into direct, signed stream URLs.

    Returns:
        ResolvedMedia: {"video": ..., "audio": ..., "source": ...}. Both URLs are equal for muxed formats.
    """
    return await handle_resolve_request(request, params.video_id)


@media_router.head("/relay", name="relay_media")
@media_router.get("/relay", name="relay_media")
async def relay_media(
    request: Request,
    params: Annotated[MediaURLParams, Query()],
    proxy_headers: Annotated[ProxyRequestHeaders, Depends(get_proxy_headers)],
):
    """
    Relay a byte-range request to the media CDN and stream the body back.

    Without a Range header the whole resource is requested ("bytes=0-").
    """
    requested_range = proxy_headers.request.pop("range", DEFAULT_RANGE)
    if "nan" in requested_range.casefold():
        # Players occasionally send "bytes=NaN-" while seeking on an unknown duration.
        raise ClientInputError("Invalid Range header", status_code=416)

    stream_request = StreamRequest(target_url=params.url, range=requested_range, headers=proxy_headers.request)
    return await handle_relay_request(request.method, stream_request)


@media_router.get("/manifest", name="manifest_proxy")
async def manifest_proxy(
    request: Request,
    params: Annotated[MediaURLParams, Query()],
    proxy_headers: Annotated[ProxyRequestHeaders, Depends(get_proxy_headers)],
):
    """
    Fetch an HLS playlist and point its CDN URLs at the relay (segments) or back here (nested playlists).
    """
    return await handle_manifest_request(request, params.url, proxy_headers)
