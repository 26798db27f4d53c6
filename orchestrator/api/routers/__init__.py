"""
orchestrator/api/routers package marker.
"""

from orchestrator.api.routers.dispatch import router as dispatch_router

__all__ = ["dispatch_router"]
