import asyncio
import logging
import re
import typing
from dataclasses import dataclass
from functools import partial

import anyio
import h11
import httpx
from fastapi import Response
from starlette.background import BackgroundTask
from starlette.concurrency import iterate_in_threadpool
from starlette.requests import Request
from starlette.types import Receive, Send, Scope
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from tqdm.asyncio import tqdm as tqdm_asyncio

from mediarelay.configs import settings
from mediarelay.const import SUPPORTED_REQUEST_HEADERS

logger = logging.getLogger(__name__)

CONTENT_RANGE_PATTERN = re.compile(r"bytes\s+(\d+)-(\d+)/(\d+|\*)")


class DownloadError(Exception):
    def __init__(self, status_code, message):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class ClientDisconnected(Exception):
    """Raised when the client went away before a long running operation finished."""


def host_matches(host: str, domains: typing.Iterable[str]) -> bool:
    """
    Check whether a host is one of the given domains or a subdomain of one.

    Matching is done on label boundaries, so "evilgooglevideo.com" or
    "googlevideo.com.evil.net" never match "googlevideo.com".
    """
    host = host.lower().rstrip(".")
    for domain in domains:
        domain = domain.lower().lstrip(".")
        if host == domain or host.endswith("." + domain):
            return True
    return False


def create_httpx_client(follow_redirects: bool = True, **kwargs) -> httpx.AsyncClient:
    """
    Create an HTTPX AsyncClient using the configured transport mounts and timeout.

    Args:
        follow_redirects (bool): Whether to follow 3xx redirects automatically.
        **kwargs: Additional AsyncClient keyword arguments.

    Returns:
        httpx.AsyncClient: Configured client.
    """
    mounts = settings.transport_config.get_mounts()
    kwargs.setdefault("timeout", settings.transport_config.timeout)
    return httpx.AsyncClient(mounts=mounts, follow_redirects=follow_redirects, **kwargs)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=4),
    retry=retry_if_exception_type(DownloadError),
)
async def fetch_with_retry(client, method, url, headers, follow_redirects=True, **kwargs):
    """
    Fetch a URL with retry logic.

    Args:
        client (httpx.AsyncClient): HTTP client to use for the request.
        method (str): HTTP method (e.g., GET, POST).
        url (str): Target URL.
        headers (dict): Request headers.
        follow_redirects (bool): Whether to follow redirects.
        **kwargs: Additional request arguments.

    Returns:
        httpx.Response: HTTP response.

    Raises:
        DownloadError: If the request fails after retries.
    """
    try:
        response = await client.request(method, url, headers=headers, follow_redirects=follow_redirects, **kwargs)
        response.raise_for_status()
        return response
    except httpx.TimeoutException:
        logger.warning(f"Timeout while downloading {url}")
        raise DownloadError(504, f"Timeout while downloading {url}")
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error {e.response.status_code} while downloading {url}")
        if e.response.status_code < 500:
            raise e
        raise DownloadError(e.response.status_code, f"HTTP error {e.response.status_code} while downloading {url}")
    except Exception as e:
        logger.error(f"Error downloading {url}: {e}")
        raise


async def download_text(url: str, headers: dict) -> str:
    """
    Download a small text document (a manifest) with retry logic.

    Raises:
        DownloadError: If the download keeps failing with a server error.
        httpx.HTTPError: If the upstream rejects the request or is unreachable.
    """
    async with create_httpx_client() as client:
        response = await fetch_with_retry(client, "GET", url, headers)
        return response.text


class Streamer:
    def __init__(self, client, raw: bool = True):
        """
        Initialize a Streamer with a configured HTTP client.

        Args:
            client (httpx.AsyncClient): The HTTP client to use for streaming.
            raw (bool): Relay the body bytes exactly as received, without content-encoding decoding.
        """
        self.client = client
        self.raw = raw
        self.response = None
        self.progress_bar = None
        self.bytes_transferred = 0
        self.start_byte = 0
        self.end_byte = 0
        self.total_size = 0

    async def create_streaming_response(self, url: str, headers: dict):
        """
        Send the outbound request and keep the response open for streaming.

        The upstream status is not checked here: the relay reports it to the client as-is.

        Args:
            url (str): Source URL for the streaming content.
            headers (dict): Request headers.
        """
        try:
            request = self.client.build_request("GET", url, headers=headers)
            self.response = await self.client.send(request, stream=True, follow_redirects=True)
        except httpx.TimeoutException:
            logger.warning("Timeout while creating streaming response")
            raise DownloadError(504, "Timeout while creating streaming response")
        except httpx.RequestError as e:
            logger.error(f"Error creating streaming response: {e}")
            raise DownloadError(502, f"Error creating streaming response: {e}")

    async def stream_content(self) -> typing.AsyncGenerator[bytes, None]:
        """
        Stream the raw upstream body as an async byte generator, in arrival order.
        """
        if not self.response:
            raise RuntimeError("No response available for streaming")

        try:
            self.parse_content_range()

            if settings.enable_streaming_progress:
                with tqdm_asyncio(
                    total=self.total_size,
                    initial=self.start_byte,
                    unit="B",
                    unit_scale=True,
                    unit_divisor=1024,
                    desc="Relaying",
                    ncols=100,
                    mininterval=1,
                ) as self.progress_bar:
                    async for chunk in self._iter_chunks():
                        yield chunk
                        self.bytes_transferred += len(chunk)
                        self.progress_bar.update(len(chunk))
            else:
                async for chunk in self._iter_chunks():
                    yield chunk
                    self.bytes_transferred += len(chunk)

        except httpx.TimeoutException:
            logger.warning("Timeout while streaming")
            raise DownloadError(504, "Timeout while streaming")
        except httpx.RemoteProtocolError as e:
            # A truncated body must not be finished as if it were complete.
            logger.warning(f"Upstream closed the connection after {self.bytes_transferred} bytes: {e}")
            raise DownloadError(502, f"Upstream closed the connection after {self.bytes_transferred} bytes")
        except GeneratorExit:
            logger.info("Streaming session stopped by the client")
        except Exception as e:
            logger.error(f"Error streaming content: {e}")
            raise

    def _iter_chunks(self) -> typing.AsyncIterator[bytes]:
        return self.response.aiter_raw() if self.raw else self.response.aiter_bytes()

    def parse_content_range(self):
        """
        Parse Content-Range/Content-Length headers to compute byte positions and total size.
        """
        match = CONTENT_RANGE_PATTERN.match(self.response.headers.get("content-range", ""))
        if match:
            self.start_byte, self.end_byte = int(match.group(1)), int(match.group(2))
            self.total_size = int(match.group(3)) if match.group(3) != "*" else self.end_byte + 1
        else:
            self.start_byte = 0
            content_length = self.response.headers.get("content-length", "0")
            self.total_size = int(content_length) if content_length.isdigit() else 0
            self.end_byte = self.total_size - 1 if self.total_size > 0 else 0

    async def close(self):
        """
        Close HTTP response and client resources.
        """
        if self.response:
            await self.response.aclose()
        if self.progress_bar:
            self.progress_bar.close()
        await self.client.aclose()


@dataclass
class ProxyRequestHeaders:
    request: dict


def get_proxy_headers(request: Request) -> ProxyRequestHeaders:
    """
    Extract the inbound headers that may be forwarded upstream.

    Args:
        request (Request): Incoming HTTP request.

    Returns:
        ProxyRequestHeaders: Request headers to forward.
    """
    request_headers = {k: v for k, v in request.headers.items() if k in SUPPORTED_REQUEST_HEADERS}
    return ProxyRequestHeaders(request_headers)


async def listen_for_disconnect(receive: Receive) -> None:
    """
    Wait until the client disconnects.
    """
    try:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                logger.debug("Client disconnected")
                break
    except Exception as e:
        logger.error(f"Error in listen_for_disconnect: {str(e)}")


async def run_until_disconnect(request: Request, awaitable: typing.Awaitable):
    """
    Await an operation, cancelling it if the client disconnects first.

    Raises:
        ClientDisconnected: If the client went away before the operation finished.
    """
    task = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(listen_for_disconnect(request.receive))
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
    if task.cancelled():
        raise ClientDisconnected("Client disconnected before the operation completed")
    return task.result()


class EnhancedStreamingResponse(Response):
    body_iterator: typing.AsyncIterable[typing.Any]

    def __init__(
        self,
        content: typing.Union[typing.AsyncIterable[typing.Any], typing.Iterable[typing.Any]],
        status_code: int = 200,
        headers: typing.Optional[typing.Mapping[str, str]] = None,
        media_type: typing.Optional[str] = None,
        background: typing.Optional[BackgroundTask] = None,
    ) -> None:
        if isinstance(content, typing.AsyncIterable):
            self.body_iterator = content
        else:
            self.body_iterator = iterate_in_threadpool(content)
        self.status_code = status_code
        self.media_type = self.media_type if media_type is None else media_type
        self.background = background
        self.init_headers(headers)
        self.actual_content_length = 0

    async def stream_response(self, send: Send) -> None:
        """
        Stream the response body in chunks. Once the status line is sent a failure can only truncate the body.
        """
        await send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            }
        )

        try:
            async for chunk in self.body_iterator:
                if not isinstance(chunk, (bytes, memoryview)):
                    chunk = chunk.encode(self.charset)
                try:
                    await send({"type": "http.response.body", "body": chunk, "more_body": True})
                    self.actual_content_length += len(chunk)
                except (ConnectionResetError, anyio.BrokenResourceError):
                    logger.info("Client disconnected during streaming")
                    return

            await send({"type": "http.response.body", "body": b"", "more_body": False})
        except (httpx.RemoteProtocolError, h11.LocalProtocolError, DownloadError) as e:
            # The status line is already out, so the only option left is to drop the connection.
            logger.warning(f"Relay terminated after {self.actual_content_length} bytes: {e}")
            raise

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """
        ASGI entrypoint: run streaming and disconnect listener concurrently.
        """
        async with anyio.create_task_group() as task_group:
            stream_func = partial(self.stream_response, send)
            listen_func = partial(listen_for_disconnect, receive)

            async def wrap(func: typing.Callable[[], typing.Awaitable[None]]) -> None:
                try:
                    await func()
                except (httpx.RemoteProtocolError, h11.LocalProtocolError, DownloadError):
                    pass
                except Exception:
                    logger.exception("Error in streaming task")
                    raise
                finally:
                    # Whichever side finishes first (body done or client gone) ends the other.
                    task_group.cancel_scope.cancel()

            task_group.start_soon(wrap, stream_func)
            await wrap(listen_func)

        if self.background is not None:
            await self.background()
