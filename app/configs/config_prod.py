"""
Production environment configuration.

These are the baseline defaults. Local overrides live in config_local.py.
"""

# FastAPI docs are disabled in production
DOCS_ENABLED = False

LOG_TO_FILES = True

CORS_ORIGINS = [
    "https://transcriber.example.com",
]

ALLOWED_HOSTS = [
    "transcriber.example.com",
    "localhost",
    "127.0.0.1",
]
