from .api import api_router
from .media import media_router
from .mirror import mirror_router

__all__ = ["api_router", "media_router", "mirror_router"]
