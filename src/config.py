"""
Configuration constants for the Strava request governor
Centralized settings for API limits, queue pacing, and background sync behavior
"""

import os
from dataclasses import dataclass, fields

# =============================================================================
# STRAVA API
# =============================================================================

STRAVA_BASE_URL = "https://www.strava.com/api/v3"

# Seconds before an outbound request is abandoned by the transport
REQUEST_TIMEOUT = 30

# =============================================================================
# API LIMITS
# =============================================================================

# Strava publishes two budgets per application: 100 calls / 15 min, 1000 calls / day
STRAVA_SHORT_TERM_LIMIT = 100
STRAVA_SHORT_TERM_SECONDS = 900
STRAVA_DAILY_LIMIT = 1000
STRAVA_LONG_TERM_SECONDS = 86400

# =============================================================================
# QUEUE PACING
# =============================================================================

# Maximum requests dispatched in one drain before the cooling period applies
BUCKET_SIZE = 25

# Pause after each drained batch (seconds)
COOLING_PERIOD = 5.0

# Pause between two dispatches inside a batch (seconds)
INTER_REQUEST_DELAY = 0.2

# Scheduler tick period (seconds)
TICK_INTERVAL = 1.0

# Re-queues allowed after a 429 before the request fails
DEFAULT_MAX_RETRIES = 3

# =============================================================================
# BACKGROUND SYNC SETTINGS
# =============================================================================

# Activities fetched by the index request when no limit is given
SYNC_DEFAULT_LIMIT = 30

# Detail requests are submitted in groups to avoid flooding the queue
SYNC_GROUP_SIZE = 10
SYNC_GROUP_PAUSE = 2.0

# Sync task records expire from the state store after 24h
SYNC_TASK_TTL = 86400

# Per-task cap on stored unit errors
SYNC_MAX_RECORDED_ERRORS = 100

# =============================================================================
# STORAGE
# =============================================================================

STATE_DIR = "data"

# Entries kept in memory by the call log for the dashboard
CALL_LOG_RECENT_SIZE = 200


@dataclass
class GovernorSettings:
    """Runtime settings for one governor instance"""
    short_term_limit: int = STRAVA_SHORT_TERM_LIMIT
    short_term_seconds: int = STRAVA_SHORT_TERM_SECONDS
    long_term_limit: int = STRAVA_DAILY_LIMIT
    long_term_seconds: int = STRAVA_LONG_TERM_SECONDS
    bucket_size: int = BUCKET_SIZE
    cooling_period: float = COOLING_PERIOD
    inter_request_delay: float = INTER_REQUEST_DELAY
    tick_interval: float = TICK_INTERVAL
    max_retries: int = DEFAULT_MAX_RETRIES
    sync_default_limit: int = SYNC_DEFAULT_LIMIT
    sync_group_size: int = SYNC_GROUP_SIZE
    sync_group_pause: float = SYNC_GROUP_PAUSE
    sync_task_ttl: int = SYNC_TASK_TTL
    request_timeout: int = REQUEST_TIMEOUT
    base_url: str = STRAVA_BASE_URL
    state_dir: str = STATE_DIR

    @classmethod
    def from_env(cls, prefix: str = "STRAVA_") -> 'GovernorSettings':
        """
        Build settings, overriding defaults from environment variables

        Each field maps to an upper-cased variable with the given prefix,
        e.g. ``bucket_size`` -> ``STRAVA_BUCKET_SIZE``. Call ``load_dotenv()``
        first to pick up values from a .env file.

        Raises:
            ValueError: If a variable cannot be converted to the field's type
        """
        overrides = {}
        for f in fields(cls):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            default = getattr(cls, f.name)
            try:
                overrides[f.name] = type(default)(raw.strip())
            except ValueError as e:
                raise ValueError(f"Invalid value for {prefix}{f.name.upper()}: {raw!r}") from e
        return cls(**overrides)
