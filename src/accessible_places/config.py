"""
Central configuration for the Accessible Places core
Handles environment variables, paths, and settings
"""
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# =========================
# Base Paths
# =========================
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = Path(os.getenv("ACCESSIBLE_PLACES_DATA_DIR", PROJECT_ROOT / "data"))
EXPORTS_DIR = DATA_DIR / "exports"
LOGS_DIR = PROJECT_ROOT / "logs"

# Ensure critical directories exist
for dir_path in [DATA_DIR, LOGS_DIR]:
    dir_path.mkdir(parents=True, exist_ok=True)

DEFAULT_DB_PATH = Path(
    os.getenv("ACCESSIBLE_PLACES_DB", DATA_DIR / "accessible_places.duckdb")
)

# =========================
# Store Transactions
# =========================
TRANSACTION_CONFIG = {
    "max_attempts": int(os.getenv("TRANSACTION_MAX_ATTEMPTS", "5")),
    "retry_min_wait": 0.05,  # seconds
    "retry_max_wait": 2.0,
}

# =========================
# Experience Points Service
# =========================
XP_SERVICE_CONFIG = {
    "url": os.getenv("XP_SERVICE_URL"),  # None = record awards locally
    "api_key": os.getenv("XP_SERVICE_API_KEY"),
    "timeout": 10,
    "max_retries": 3,
    "retry_min_wait": 1,
    "retry_max_wait": 8,
}

# =========================
# Ratings
# =========================
MIN_RATING = 0
MAX_RATING = 5
DEFAULT_AUTHOR_NAME = "Anônimo"

# Feature badge buckets, checked top-down
FEATURE_BUCKET_THRESHOLDS = (
    ("high", 4.0),
    ("medium", 3.0),
)

# Overall location badge, checked top-down
RATING_TIER_THRESHOLDS = (
    ("excellent", 4.5),
    ("good", 3.5),
    ("regular", 2.0),
)

# =========================
# Logging Configuration
# =========================
LOG_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "detailed": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        },
        "file": {
            "class": "logging.FileHandler",
            "level": "DEBUG",
            "formatter": "detailed",
            "filename": str(LOGS_DIR / "accessible_places.log"),
            "mode": "a",
        },
    },
    "loggers": {
        "accessible_places": {
            "level": "DEBUG",
            "handlers": ["console", "file"],
            "propagate": False,
        }
    },
    "root": {"level": "INFO", "handlers": ["console", "file"]},
}


# =========================
# Helper Functions
# =========================
def get_export_path(filename: str, export_dir: Optional[Path] = None) -> Path:
    """
    Get standardized path for a legacy export file

    Args:
        filename: Export filename (JSON array or NDJSON)
        export_dir: Optional custom directory

    Returns:
        Path object for the export file
    """
    if export_dir is None:
        export_dir = EXPORTS_DIR

    export_dir.mkdir(parents=True, exist_ok=True)
    return export_dir / filename


def is_valid_rating(value) -> bool:
    """True if value is a real number inside [MIN_RATING, MAX_RATING]"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if value != value:  # NaN
        return False
    return MIN_RATING <= value <= MAX_RATING


# =========================
# Environment Info
# =========================
def print_config_summary():
    """Print configuration summary for debugging"""
    print("=" * 60)
    print("Accessible Places Configuration")
    print("=" * 60)
    print(f"Project Root: {PROJECT_ROOT}")
    print(f"Data Directory: {DATA_DIR}")
    print(f"Database: {DEFAULT_DB_PATH}")
    print(f"Logs Directory: {LOGS_DIR}")
    print("\nTransactions:")
    print(f"  Max Attempts: {TRANSACTION_CONFIG['max_attempts']}")
    print(f"  Backoff: {TRANSACTION_CONFIG['retry_min_wait']}s - {TRANSACTION_CONFIG['retry_max_wait']}s")
    print(f"\nXP Service: {XP_SERVICE_CONFIG['url'] or 'local (DuckDB)'}")
    print(f"Rating Range: {MIN_RATING}-{MAX_RATING}")
    print("=" * 60)


if __name__ == "__main__":
    print_config_summary()
