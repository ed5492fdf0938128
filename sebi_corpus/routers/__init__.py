"""API routers package"""

from sebi_corpus.routers.health import router as health_router
from sebi_corpus.routers.search import router as search_router
from sebi_corpus.routers.admin import router as admin_router

__all__ = ["health_router", "search_router", "admin_router"]
