"""TVTime integration."""

from .auth import TVTimeAuth
from .client import TVTimeClient
from .tokens import TVTimeTokenManager

__all__ = ["TVTimeAuth", "TVTimeClient", "TVTimeTokenManager"]
