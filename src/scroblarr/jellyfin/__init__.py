"""Jellyfin integration."""

from .client import JellyfinClient

__all__ = ["JellyfinClient"]
