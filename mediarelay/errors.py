class RelayError(Exception):
    """Base class for failures that are reported to the client as JSON."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ClientInputError(RelayError):
    status_code = 400
    error = "invalid_request"


class UpstreamUnavailable(RelayError):
    status_code = 502
    error = "upstream_unavailable"


class AllInstancesFailed(UpstreamUnavailable):
    status_code = 503
    error = "all_instances_failed"

    def __init__(self, message: str = "All Piped instances failed"):
        super().__init__(message)


class ResolutionError(RelayError):
    error = "failed_to_fetch_video"


class AuthChallenge(ResolutionError):
    error = "auth_challenge"


class ResolverTimeout(ResolutionError):
    status_code = 503
    error = "resolver_timeout"


class NotReadyError(RelayError):
    status_code = 503
    error = "not_ready"
