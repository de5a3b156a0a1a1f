"""
Constants and configuration values for ReleaseHub.

This module contains all hardcoded values, URLs, timeouts, and other constants
used throughout the application.
"""

# GitHub API URLs
GITHUB_API_BASE = "https://api.github.com/repos"
GITHUB_MAX_PER_PAGE = 100
GITHUB_API_VERSION = "2022-11-28"

# Network timeouts (in seconds)
DEFAULT_FETCH_TIMEOUT = 60
DEFAULT_CONNECTOR_LIMIT = 20
DEFAULT_CHUNK_SIZE = 64 * 1024

# HTTP status thresholds
HTTP_STATUS_ERROR_THRESHOLD = 400
HTTP_STATUS_RETRY_THRESHOLD = 500

# Release index defaults
DEFAULT_RELEASES_TTL = 60 * 60  # 1 hour
DEFAULT_PRE_FETCH = True

# Asset cache defaults
DEFAULT_CACHE_MAX_BYTES = 500 * 1024 * 1024  # 500 MB
DEFAULT_CACHE_MAX_AGE = 60 * 60  # 1 hour
CACHE_INDEX_FILE = "index.json"
CACHE_PART_SUFFIX = ".part"
CACHE_DATA_SUFFIX = ".bin"

# Server defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 5000

# Channels and tag filters
STABLE_CHANNEL = "stable"
ANY_CHANNEL = "*"
LATEST_TAG = "latest"
WILDCARD_TAGS = frozenset({"latest", "*", "all"})

# Squirrel.Windows feed
WIN_RELEASES_FILENAME = "RELEASES"
NUPKG_EXTENSION = ".nupkg"

# Filesystem backend
NOTES_FILENAME = "NOTES.md"

# Logging configuration
LOGGER_NAME = "releasehub"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_NAME = "releasehub.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5

# Configuration file names
APP_NAME = "releasehub"
CONFIG_FILE_NAME = "releasehub.yaml"

# Environment variable names
LOG_LEVEL_ENV_VAR = "RELEASEHUB_LOG_LEVEL"
GITHUB_TOKEN_ENV_VAR = "RELEASEHUB_GITHUB_TOKEN"
API_TOKEN_ENV_VAR = "RELEASEHUB_API_TOKEN"
REFRESH_SECRET_ENV_VAR = "RELEASEHUB_REFRESH_SECRET"

# Webhook
WEBHOOK_SIGNATURE_HEADER = "X-Hub-Signature-256"
WEBHOOK_EVENT_HEADER = "X-GitHub-Event"
