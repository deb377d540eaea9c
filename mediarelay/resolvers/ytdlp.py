import asyncio
import logging
from typing import List

from mediarelay.configs import settings
from mediarelay.const import AUTH_CHALLENGE_MARKERS
from mediarelay.errors import AuthChallenge, ResolutionError, ResolverTimeout
from mediarelay.resolvers.base import BaseResolver
from mediarelay.schemas import ResolvedMedia

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to resolve the video"
AUTH_CHALLENGE_MESSAGE = (
    "The video platform asked for a sign-in or bot check. "
    "Refresh the cookie file used by the resolver and try again."
)


def is_auth_challenge(diagnostics: str) -> bool:
    diagnostics = diagnostics.lower()
    return any(marker in diagnostics for marker in AUTH_CHALLENGE_MARKERS)


class YtDlpResolver(BaseResolver):
    """Resolves videos by running the yt-dlp command line tool in a subprocess."""

    name = "yt-dlp"

    def build_command(self, video_id: str) -> List[str]:
        """
        Build the argument vector. The identifier is passed as a single argument after "--",
        never through a shell.
        """
        return [
            settings.resolver_binary,
            "--cookies",
            settings.cookie_file,
            "--sleep-requests",
            str(settings.resolver_sleep_requests),
            "--user-agent",
            settings.resolver_user_agent,
            "--get-url",
            "-f",
            settings.resolver_format,
            *settings.resolver_extra_args,
            "--",
            f"https://youtu.be/{video_id}",
        ]

    async def resolve(self, video_id: str) -> ResolvedMedia:
        command = self.build_command(video_id)
        logger.info(f"Resolving {video_id} with {settings.resolver_binary}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Could not start {settings.resolver_binary}: {e}")
            raise ResolutionError(GENERIC_FAILURE_MESSAGE)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), settings.resolver_timeout)
        except asyncio.TimeoutError:
            await self._terminate(process)
            logger.error(f"{settings.resolver_binary} timed out after {settings.resolver_timeout}s for {video_id}")
            raise ResolverTimeout("Video resolution timed out")
        except asyncio.CancelledError:
            await self._terminate(process)
            logger.info(f"Resolution of {video_id} cancelled")
            raise

        diagnostics = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0:
            logger.error(f"{settings.resolver_binary} exited with {process.returncode}: {diagnostics.strip()}")
            raise self.classify_failure(diagnostics)

        try:
            return self.build_result(stdout.decode("utf-8", errors="replace").splitlines())
        except ResolutionError:
            logger.error(f"{settings.resolver_binary} produced no URLs for {video_id}: {diagnostics.strip()}")
            raise self.classify_failure(diagnostics)

    @staticmethod
    def classify_failure(diagnostics: str) -> ResolutionError:
        if is_auth_challenge(diagnostics):
            return AuthChallenge(AUTH_CHALLENGE_MESSAGE)
        return ResolutionError(GENERIC_FAILURE_MESSAGE)

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
