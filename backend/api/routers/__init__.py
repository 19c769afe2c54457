"""API Routers package

Routers are organized by feature domain.
"""

from . import auth_router, guilds_router, transfers_router

__all__ = [
    "auth_router",
    "guilds_router",
    "transfers_router",
]
