import re
from typing import Iterable
from urllib import parse

from mediarelay.const import PLAYLIST_EXTENSIONS, PLAYLIST_PATH_MARKERS
from mediarelay.utils.http_utils import host_matches

URL_TOKEN_PATTERN = re.compile(r"https?://[^\s\"']+")


class ManifestRewriter:
    def __init__(self, relay_path: str, manifest_path: str, domains: Iterable[str]):
        """
        Initializes the ManifestRewriter with the same-origin endpoint paths.

        Args:
            relay_path (str): Path of the range relay endpoint, e.g. "/media/relay".
            manifest_path (str): Path of the manifest endpoint, used for nested playlists.
            domains (Iterable[str]): Hosting domains whose URLs get routed through this service.
        """
        self.relay_path = relay_path
        self.manifest_path = manifest_path
        self.domains = tuple(domains)

    def rewrite(self, content: str) -> str:
        """
        Rewrites every absolute URL of the hosting domains in a single pass.

        URLs on other hosts are left byte-identical. Nested playlists are not fetched here;
        they are pointed back at the manifest endpoint and rewritten when the player requests them.

        Args:
            content (str): The manifest text.

        Returns:
            str: The rewritten manifest text.
        """
        return URL_TOKEN_PATTERN.sub(self._replace, content)

    def _replace(self, match: re.Match) -> str:
        url = match.group(0)
        try:
            parsed = parse.urlparse(url)
        except ValueError:
            return url
        if not parsed.hostname or not host_matches(parsed.hostname, self.domains):
            return url
        endpoint = self.manifest_path if self.is_playlist(parsed) else self.relay_path
        return f"{endpoint}?url={parse.quote(url, safe='')}"

    @staticmethod
    def is_playlist(parsed_url: parse.ParseResult) -> bool:
        path = parsed_url.path
        return path.endswith(PLAYLIST_EXTENSIONS) or any(marker in path for marker in PLAYLIST_PATH_MARKERS)
