"""
Centralized configuration loader.

Reads the ENVIRONMENT env-var and merges the correct environment module
(config_prod or config_local) into a single settings namespace.

Usage:
    from configs.config import get_config
    cfg = get_config()
    print(cfg.MAX_FILE_SIZE_MB)
"""

import os
import importlib
import logging
from types import SimpleNamespace

logger = logging.getLogger(__name__)

# ── Environment detection ────────────────────────────────────────────────
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")

# ── Shared constants (environment-independent) ───────────────────────────

# Scratch storage for downloads and segments
TEMP_DIR = os.getenv("TEMP_DIR", "/tmp/podcast-transcriber")

# Audio sizing (provider contract)
MAX_FILE_SIZE_MB = 25
CHUNK_DURATION_SECONDS = 600
CHUNK_OVERLAP_SECONDS = 10
WORDS_PER_SECOND_ESTIMATE = 2

# Normalized audio profile
AUDIO_CHANNELS = 1
AUDIO_SAMPLE_RATE = 16000
AUDIO_BITRATE = "64k"
AUDIO_CODEC = "libmp3lame"

# Speech-to-text provider (Groq, OpenAI-compatible API)
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
TRANSCRIPTION_API_BASE = os.getenv(
    "TRANSCRIPTION_API_BASE", "https://api.groq.com/openai/v1"
)
TRANSCRIPTION_MODEL = "whisper-large-v3"
TRANSCRIPTION_LANGUAGE = "en"

# Summarisation (Gemini)
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL_NAME = os.getenv("GEMINI_MODEL_ID", "gemini-flash-latest")
SUMMARY_TRANSCRIPT_CHAR_LIMIT = 20000

# Feed discovery
PODCAST_INDEX_KEY = os.getenv("PODCAST_INDEX_KEY", "")
PODCAST_INDEX_SECRET = os.getenv("PODCAST_INDEX_SECRET", "")
PODCAST_INDEX_SEARCH_URL = "https://api.podcastindex.org/api/1.0/search/byterm"
ITUNES_SEARCH_URL = "https://itunes.apple.com/search"
FEED_MATCH_MIN_SCORE = 0.4
USER_AGENT = "PodcastTranscriber/1.0"

# Notifications
WEBHOOK_URL = os.getenv("WEBHOOK_URL", "")

# Timeouts (seconds)
HTTP_TIMEOUT_SECONDS = 30
DOWNLOAD_TIMEOUT_SECONDS = 300
TRANSCODE_TIMEOUT_SECONDS = 900
PROVIDER_TIMEOUT_SECONDS = 600
SUMMARY_TIMEOUT_SECONDS = 120

# Job retention
JOB_RETENTION_SECONDS = 3600
RESULT_RETENTION_SECONDS = 60
JOB_SWEEP_INTERVAL_SECONDS = 60
PROGRESS_POLL_INTERVAL_SECONDS = 0.5

# Security
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "change-me-in-production")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in (
    "1", "true", "yes", "on",
)

CORS_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]
CORS_HEADERS = [
    "Accept",
    "Accept-Language",
    "Content-Type",
    "Origin",
    "X-Requested-With",
    "X-Admin-Key",
    "X-Request-ID",
]

# Logging
LOG_FILE_APP = "app.log"
LOG_FILE_ERRORS = "errors.log"
LOG_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
LOG_BACKUP_COUNT = 5


# ── Config loader ────────────────────────────────────────────────────────

_config_cache = None


def get_config() -> SimpleNamespace:
    """
    Return a merged configuration namespace.

    Environment-specific values from config_local or config_prod
    override the shared defaults defined above.
    """
    global _config_cache
    if _config_cache is not None:
        return _config_cache

    # Start with all module-level constants
    base = {
        key: value
        for key, value in globals().items()
        if key.isupper() and not key.startswith("_")
    }

    # Overlay environment-specific settings
    env_module_name = (
        "configs.config_local" if ENVIRONMENT == "development"
        else "configs.config_prod"
    )
    try:
        env_module = importlib.import_module(env_module_name)
        for key in dir(env_module):
            if key.isupper():
                base[key] = getattr(env_module, key)
        logger.info("Loaded configuration from %s", env_module_name)
    except ImportError:
        logger.warning(
            "Environment config '%s' not found; using shared defaults.",
            env_module_name,
        )

    _config_cache = SimpleNamespace(**base)
    return _config_cache
