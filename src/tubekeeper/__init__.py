"""tubekeeper - keeps local copies of subscribed video playlists in sync."""

__version__ = "0.1.0"
