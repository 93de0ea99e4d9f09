# =============================================================================
# NetSmart -- Defaults
# =============================================================================
#
# Built-in defaults for retry, queueing, quality classification and probing.
# Durations ending in ``_MS`` are milliseconds, everything else is seconds.
# =============================================================================

# -- Retry --------------------------------------------------------------------

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000

# Exponent cap for 2**(attempt-1); keeps float math finite for huge attempts.
MAX_BACKOFF_EXPONENT = 62

# Empty = fall back to the built-in rule (>=500, 408, 429).
DEFAULT_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset()

DEFAULT_RETRYABLE_ERROR_TAGS: frozenset[str] = frozenset(
    {
        "NetworkError",
        "TimeoutError",
        "ConnectError",
        "ECONNREFUSED",
        "ETIMEDOUT",
    }
)

RETRYABLE_FALLBACK_STATUSES = frozenset({408, 429})
RETRYABLE_FALLBACK_MIN_STATUS = 500

# -- Queue --------------------------------------------------------------------

DEFAULT_STORAGE_KEY = "netsmart-queue"
STORAGE_TIMEOUT = 5.0

# -- Quality thresholds -------------------------------------------------------

QUALITY_WEAK_LATENCY = 1000.0    # ms
QUALITY_MEDIUM_LATENCY = 300.0   # ms

LATENCY_WINDOW_SIZE = 50

# -- Probing ------------------------------------------------------------------

DEFAULT_PROBE_INTERVAL_MS = 30000
DEFAULT_PROBE_ENDPOINT = "https://www.google.com/favicon.ico"
PROBE_LATENCY_TIMEOUT = 5.0
PROBE_THROUGHPUT_TIMEOUT = 3.0

# -- Platform quality estimation ---------------------------------------------

WIFI_STRONG_DBM = -50
WIFI_MEDIUM_DBM = -70

# -- Transport ----------------------------------------------------------------

DEFAULT_REQUEST_TIMEOUT = 30.0
