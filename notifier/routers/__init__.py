from .health import health_router
from .jobs import jobs_router

__all__ = ["health_router", "jobs_router"]
