"""Trakt integration."""

from .client import TraktClient
from .oauth import TraktOAuth
from .tokens import TraktTokenManager

__all__ = ["TraktClient", "TraktOAuth", "TraktTokenManager"]
