"""scroblarr - relays Plex and Jellyfin scrobbles to Trakt and TVTime."""

__version__ = "0.1.0"
