import logging
import os
import sys

# --- GAME CONSTANTS ---
class GameConstants:
    BIG = "BIG"
    SMALL = "SMALL"
    BIG_THRESHOLD = 50
    STATUS_SUCCESS = "success"
    STATUS_ERROR = "error"


class EngineConfig:
    # Model population (count, weight share) per family
    TREND_COUNT = 48
    MEAN_REVERSION_COUNT = 30
    PATTERN_COUNT = 24
    STATISTICAL_COUNT = 18

    TREND_SHARE = 0.40
    MEAN_REVERSION_SHARE = 0.25
    PATTERN_SHARE = 0.20
    STATISTICAL_SHARE = 0.15

    PATTERN_SCAN_LIMIT = 50
    PATTERN_FALLBACK_WINDOW = 5
    PATTERN_FALLBACK_THRESHOLD = 0.3

    STAT_SLICE = 20
    EMA_ALPHA = 0.3
    RSI_PERIOD = 14
    BOLLINGER_PERIOD = 20
    BOLLINGER_STD = 2

    TREND_WINDOWS = (5, 15, 30)
    TREND_MIN_DATA = 10

    DRAW_INTERVAL_SECONDS = 60
    MIN_HISTORY_REQUIRED = 50
    WEIGHT_TOLERANCE = 1e-6


class StakeConfig:
    BASE_STAKE = 1.0
    TREND_MULTIPLIER = 2.0
    HIGH_CONFIDENCE = 75
    HIGH_TREND_STRENGTH = 0.1
    MEDIUM_CONFIDENCE = 65
    MEDIUM_FRACTION = 0.7
    LOW_FRACTION = 0.3


# --- DATA SOURCE ---
API_URL = os.environ.get(
    "WINGO_API_URL",
    "https://draw.ar-lottery01.com/WinGo/WinGo_1M/GetHistoryIssuePage.json",
)
HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "application/json",
    "Cache-Control": "no-cache",
}
FETCH_TIMEOUT = 5.0
FETCH_CACHE_SECONDS = 3.0
FETCH_LIMIT = 200
HISTORY_DEFAULT_LIMIT = 100

POLL_INTERVAL = float(os.environ.get("WINGO_POLL_INTERVAL", "2.0"))
RECONNECT_DELAY = 5

# --- CACHE TTLs ---
PREDICTION_KEY = "wingo:predictions:latest"
STATS_KEY = "wingo:stats"
HISTORY_KEY = "wingo:history"
PREDICTION_TTL = 300
HISTORY_TTL = 30

# --- PERSISTENCE PATHS ---
def resolve_data_dir() -> str:
    """Pick the persistent disk if one is mounted, else the project directory."""
    override = os.environ.get("WINGO_DATA_DIR")
    if override:
        return override
    if os.path.exists('/var/lib/data'):
        return '/var/lib/data'
    if os.path.exists('/data'):
        return '/data'
    return os.path.abspath(os.path.dirname(__file__))


# --- LOGGING SETUP ---
def configure_logging(level: str = None) -> None:
    level = level or os.environ.get("WINGO_LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
