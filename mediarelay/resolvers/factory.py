from typing import Dict, Type

from mediarelay.errors import ResolutionError
from mediarelay.resolvers.base import BaseResolver
from mediarelay.resolvers.ytdlp import YtDlpResolver


class ResolverFactory:
    """Factory for creating video resolvers."""

    _resolvers: Dict[str, Type[BaseResolver]] = {
        YtDlpResolver.name: YtDlpResolver,
    }

    @classmethod
    def get_resolver(cls, name: str) -> BaseResolver:
        """Get the resolver registered under the given name."""
        resolver_class = cls._resolvers.get(name)
        if not resolver_class:
            raise ResolutionError(f"Unsupported resolver: {name}")
        return resolver_class()
