"""Sync module."""

from .destinations import Destination, TraktDestination, TVTimeDestination, build_destinations, close_destinations
from .engine import SyncEngine
from .refresh import TokenRefreshService

__all__ = [
    "Destination",
    "SyncEngine",
    "TVTimeDestination",
    "TokenRefreshService",
    "TraktDestination",
    "build_destinations",
    "close_destinations",
]
