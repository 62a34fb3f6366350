"""
Runtime configuration for the live transit service.
Every tunable is read from the environment once at import time.
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ===================== UPSTREAM ENDPOINTS =====================
CLIENT_NAME = os.getenv("CLIENT_NAME", "ruterlive-web").strip()

ET_URL = os.getenv(
    "ET_URL", "https://api.entur.io/realtime/v1/rest/et?datasetId=RUT&maxSize=3000"
).strip()
VEHICLES_GRAPHQL_URL = os.getenv(
    "VEHICLES_GRAPHQL_URL", "https://api.entur.io/realtime/v2/vehicles/graphql"
).strip()
JP_GRAPHQL_URL = os.getenv(
    "JP_GRAPHQL_URL", "https://api.entur.io/journey-planner/v3/graphql"
).strip()
GEOCODER_URL = os.getenv(
    "GEOCODER_URL", "https://api.entur.io/geocoder/v1/autocomplete"
).strip()
GTFS_STOPS_URL = os.getenv(
    "GTFS_STOPS_URL",
    "https://storage.googleapis.com/marduk-production/outbound/gtfs/rb_norway-aggregated-gtfs-basic.zip",
).strip()

# ===================== GEOGRAPHY =====================
# Greater Oslo: Oslo, Akershus, Lillestrøm, Drammen area, Ski, Nesodden
BOUNDS_MIN_LAT = float(os.getenv("BOUNDS_MIN_LAT", "59.45"))
BOUNDS_MAX_LAT = float(os.getenv("BOUNDS_MAX_LAT", "60.2"))
BOUNDS_MIN_LON = float(os.getenv("BOUNDS_MIN_LON", "10.15"))
BOUNDS_MAX_LON = float(os.getenv("BOUNDS_MAX_LON", "11.25"))
CENTER_LAT = float(os.getenv("CENTER_LAT", "59.9139"))
CENTER_LON = float(os.getenv("CENTER_LON", "10.7522"))

QUAY_ID_PATTERN = r"^NSR:Quay:\d+$"

# ===================== CACHE TTLS (seconds) =====================
VEHICLES_CACHE_TTL_S = float(os.getenv("VEHICLES_CACHE_TTL_S", "20"))
ET_REFRESH_S = float(os.getenv("ET_REFRESH_S", "90"))
ESTIMATE_CACHE_TTL_S = float(os.getenv("ESTIMATE_CACHE_TTL_S", "15"))
SHAPE_CACHE_TTL_S = float(os.getenv("SHAPE_CACHE_TTL_S", str(24 * 60 * 60)))
SHAPE_REFRESH_INTERVAL_S = float(os.getenv("SHAPE_REFRESH_INTERVAL_S", str(15 * 60)))
GTFS_CACHE_TTL_S = float(os.getenv("GTFS_CACHE_TTL_S", str(23 * 60 * 60)))
DEPARTURES_CACHE_TTL_S = int(os.getenv("DEPARTURES_CACHE_TTL_S", "30"))
RESPONSE_CACHE_MAX_ENTRIES = int(os.getenv("RESPONSE_CACHE_MAX_ENTRIES", "2000"))
RATE_LIMIT_COOLDOWN_S = float(os.getenv("RATE_LIMIT_COOLDOWN_S", "300"))

# ===================== TIMEOUTS / RETRIES =====================
DEFAULT_TIMEOUT_S = float(os.getenv("DEFAULT_TIMEOUT_S", "30"))
DEFAULT_RETRIES = int(os.getenv("DEFAULT_RETRIES", "3"))
INITIAL_BACKOFF_S = float(os.getenv("INITIAL_BACKOFF_S", "1.0"))
STATUS_RETRY_DELAYS_S = (2.0, 4.0, 8.0, 12.0)

ET_TIMEOUT_S = float(os.getenv("ET_TIMEOUT_S", "60"))
GTFS_TIMEOUT_S = float(os.getenv("GTFS_TIMEOUT_S", "120"))
GRAPHQL_TIMEOUT_S = float(os.getenv("GRAPHQL_TIMEOUT_S", "15"))
TRIP_QUERY_TIMEOUT_S = float(os.getenv("TRIP_QUERY_TIMEOUT_S", "25"))

# ===================== BATCHING =====================
QUAY_BATCH_SIZE = int(os.getenv("QUAY_BATCH_SIZE", "25"))
LINE_MODE_BATCH_SIZE = int(os.getenv("LINE_MODE_BATCH_SIZE", "20"))
LOOKUP_CONCURRENCY = int(os.getenv("LOOKUP_CONCURRENCY", "4"))

# ===================== ROUTE GEOMETRY =====================
# Max km between neighbouring stops before a point is treated as misplaced.
MAX_ROUTE_SPAN_KM = float(os.getenv("MAX_ROUTE_SPAN_KM", "25"))
MAX_ROUTE_SPAN_KM_BUS = float(os.getenv("MAX_ROUTE_SPAN_KM_BUS", "50"))
MIN_SHAPE_POINTS_METRO = 5
MIN_SHAPE_POINTS = 3

# ===================== CLIENT POLLING HINTS =====================
POLL_INTERVAL_S = int(os.getenv("POLL_INTERVAL_S", "30"))
POLL_INTERVAL_BACKOFF_S = int(os.getenv("POLL_INTERVAL_BACKOFF_S", "45"))

# ===================== FEATURE FLAGS =====================
ENABLE_GEOCODER_FALLBACK = _env_bool("ENABLE_GEOCODER_FALLBACK", False)
ENABLE_BACKGROUND_JOBS = _env_bool("ENABLE_BACKGROUND_JOBS", True)

# ===================== SERVER =====================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
