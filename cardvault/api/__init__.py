from cardvault.api.health import router as health_router
from cardvault.api.migration import router as migration_router

__all__ = [
    "health_router",
    "migration_router",
]
