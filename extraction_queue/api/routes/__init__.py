"""
API routes module.
"""

from extraction_queue.api.routes.extractions import router as extractions_router
from extraction_queue.api.routes.health import router as health_router
from extraction_queue.api.routes.jobs import router as jobs_router

__all__ = ["jobs_router", "extractions_router", "health_router"]
