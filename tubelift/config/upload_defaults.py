"""
Protocol constants and tuning defaults for resumable uploads.
Defaults are overridable through settings (UPLOAD_* environment variables).
"""

# Chunks other than the last must be multiples of 256 KiB on Google endpoints
CHUNK_GRANULARITY = 256 * 1024
DEFAULT_CHUNK_SIZE = 40 * CHUNK_GRANULARITY  # 10 MiB

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_SECONDS = 64.0
DEFAULT_JITTER_SECONDS = 1.0
DEFAULT_TIMEOUT_SECONDS = 60.0

# HTTP status codes used by the resumable protocol
RESUME_INCOMPLETE = 308
FORBIDDEN = 403
REQUEST_TIMEOUT = 408
TOO_MANY_REQUESTS = 429
SESSION_GONE = (404, 410)

# 403 reasons that mean "slow down" rather than "not allowed"
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})

UPLOAD_BASE_URL = "https://www.googleapis.com/upload/youtube/v3"
VIDEO_UPLOAD_URL = f"{UPLOAD_BASE_URL}/videos"
THUMBNAIL_UPLOAD_URL = f"{UPLOAD_BASE_URL}/thumbnails/set"

REVOKE_URL = "https://oauth2.googleapis.com/revoke"

YOUTUBE_UPLOAD_SCOPE = "https://www.googleapis.com/auth/youtube.upload"
YOUTUBE_READONLY_SCOPE = "https://www.googleapis.com/auth/youtube.readonly"
