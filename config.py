"""
config.py — Loads settings.yaml and environment variables.
Provides typed access to all configuration.
"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent

# Load settings.yaml
SETTINGS_PATH = PROJECT_ROOT / "settings.yaml"
with open(SETTINGS_PATH, "r") as f:
    _settings = yaml.safe_load(f)


# --- Crawler ---
DEFAULT_FREQUENCY = _settings["crawler"]["default_frequency"]
DEFAULT_MAX_RESULTS = _settings["crawler"]["default_max_results"]
QUEUE_SIZE = _settings["crawler"]["queue_size"]
WORKERS_PER_STAGE = _settings["crawler"]["workers_per_stage"]
SOURCE_LOG_LIMIT = _settings["crawler"]["source_log_limit"]
CRAWL_LOGS_LIMIT = _settings["crawler"]["crawl_logs_limit"]
RECENT_LOGS_LIMIT = _settings["crawler"]["recent_logs_limit"]

# --- Fetcher ---
FETCH_TIMEOUT = float(_settings["fetcher"]["timeout_seconds"])
MAX_REDIRECTS = _settings["fetcher"]["max_redirects"]

# --- Extraction ---
EXTRACTION = _settings["extraction"]
EXTRACTION_MODEL = EXTRACTION["model"]
EXTRACTION_MAX_TOKENS = EXTRACTION["max_tokens"]
MAX_CONTENT_CHARS = EXTRACTION["max_content_chars"]
EXTRACTION_TIMEOUT = float(EXTRACTION["timeout_seconds"])
EXTRACTION_DEFAULT_LOCATION = EXTRACTION["default_location"]
FALLBACK_CATEGORY = EXTRACTION["fallback_category"]
CATEGORIES = EXTRACTION["categories"]

# --- Deduplication ---
TITLE_MATCH_THRESHOLD = _settings["deduplication"]["title_threshold"]

# --- Drafts ---
DEFAULT_DEADLINE_DAYS = _settings["drafts"]["default_deadline_days"]
DEFAULT_OPPORTUNITY_LOCATION = _settings["drafts"]["default_location"]

# --- Health ---
HEALTH_WINDOW = _settings["health"]["window"]
HEALTH_ERROR_THRESHOLD = _settings["health"]["error_threshold"]

# --- API Keys & Secrets (from .env) ---
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")

# --- Database ---
DB_PATH = Path(os.getenv("CRAWLER_DB_PATH", str(PROJECT_ROOT / "data" / "crawler.db")))

# --- Logging ---
LOG_DIR = PROJECT_ROOT / "logs"
LOG_FILE = LOG_DIR / "crawler.log"


def validate_config():
    """Check that critical configuration is present."""
    warnings = []

    if not ANTHROPIC_API_KEY:
        warnings.append("ANTHROPIC_API_KEY is not set — extraction will not work")
    if FALLBACK_CATEGORY in CATEGORIES:
        warnings.append(f"Fallback category '{FALLBACK_CATEGORY}' is also listed in categories")
    if not 1 <= DEFAULT_MAX_RESULTS <= 1000:
        warnings.append(f"default_max_results={DEFAULT_MAX_RESULTS} is outside 1-1000")
    if WORKERS_PER_STAGE < 1:
        warnings.append("workers_per_stage must be at least 1 — falling back to 1")

    return warnings
