"""
app/api/routers package marker.
"""

from app.api.routers.batch_jobs import router as batch_jobs_router
from app.api.routers.schedulers import router as schedulers_router

__all__ = [
    "batch_jobs_router",
    "schedulers_router",
]
