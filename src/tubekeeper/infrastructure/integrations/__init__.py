"""External integrations (HTTP thumbnail store, yt-dlp downloader)."""
