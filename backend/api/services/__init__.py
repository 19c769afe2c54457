"""Services layer - API-facing clients

Services are initialized with their dependencies and accessed through dependency injection.
"""

from .auth_service import AuthService
from .discord_api import DiscordAPIClient, TokenExchangeResult

__all__ = [
    "AuthService",
    "DiscordAPIClient",
    "TokenExchangeResult",
]
