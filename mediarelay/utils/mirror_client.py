import asyncio
import logging
from typing import Any, List, Optional, Sequence
from urllib.parse import urlencode

import httpx

from mediarelay.configs import settings
from mediarelay.errors import AllInstancesFailed

logger = logging.getLogger(__name__)


def build_candidate_urls(instances: Sequence[str], subpath: str, query: str = "") -> List[str]:
    """
    Build one request URL per mirror instance, keeping the configured order.

    Args:
        instances (Sequence[str]): Base URLs of the mirror instances.
        subpath (str): Path below the instance base URL, e.g. "streams/abc".
        query (str): Raw query string without the leading "?".

    Returns:
        List[str]: Candidate URLs, one per instance.
    """
    suffix = "/" + subpath.lstrip("/")
    if query:
        suffix = f"{suffix}?{query}"
    return [instance.rstrip("/") + suffix for instance in instances]


class MirrorFailoverClient:
    """
    Tries interchangeable mirror instances one after the other until one answers with a 2xx.

    Every call starts again from the first configured instance; a failing instance is only
    skipped for the current call.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        instances: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.instances = tuple(instances if instances is not None else settings.mirror_instances)
        self.timeout = timeout if timeout is not None else settings.mirror_timeout
        self.headers = {
            "accept": "application/json",
            "user-agent": settings.user_agent,
        }

    async def _send(self, url: str) -> Optional[httpx.Response]:
        """Send one attempt. Returns the open response on 2xx, None otherwise."""
        request = self.client.build_request("GET", url, headers=self.headers, timeout=httpx.Timeout(self.timeout))
        try:
            response = await asyncio.wait_for(self.client.send(request, stream=True), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Mirror {url} did not answer within {self.timeout}s")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Mirror {url} failed: {e}")
            return None

        if response.is_success:
            return response

        logger.warning(f"Mirror {url} answered with status {response.status_code}")
        await response.aclose()
        return None

    async def open(self, subpath: str, query: str = "") -> httpx.Response:
        """
        Return the first successful response, still open for streaming.

        The caller owns the returned response and must close it.

        Raises:
            AllInstancesFailed: If no instance answered with a 2xx status.
        """
        for url in build_candidate_urls(self.instances, subpath, query):
            response = await self._send(url)
            if response is not None:
                logger.debug(f"Serving mirror request from {url}")
                return response
        raise AllInstancesFailed()

    async def get_json(self, subpath: str, params: Optional[dict] = None, expected: type = dict) -> Any:
        """
        Fetch and decode a JSON document, falling through to the next instance on any failure.

        Args:
            subpath (str): Path below the instance base URL.
            params (dict, optional): Query parameters; None values are dropped.
            expected (type): Type of the top-level JSON value. Instances answering with anything
                else (e.g. an error object where a list is expected) are skipped.

        Raises:
            AllInstancesFailed: If no instance returned a decodable JSON body of the expected type.
        """
        params = {k: v for k, v in (params or {}).items() if v is not None}
        for url in build_candidate_urls(self.instances, subpath, urlencode(params)):
            response = await self._send(url)
            if response is None:
                continue
            try:
                await asyncio.wait_for(response.aread(), self.timeout)
                data = response.json()
                if isinstance(data, expected):
                    return data
                logger.warning(f"Mirror {url} returned {type(data).__name__}, expected {expected.__name__}")
            except asyncio.TimeoutError:
                logger.warning(f"Mirror {url} body did not arrive within {self.timeout}s")
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Mirror {url} returned an unusable body: {e}")
            finally:
                await response.aclose()
        raise AllInstancesFailed()
