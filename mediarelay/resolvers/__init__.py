from .base import BaseResolver
from .factory import ResolverFactory

__all__ = ["BaseResolver", "ResolverFactory"]
