# -*- coding: utf-8 -*-
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

# --- Environment / Telegram ---
TELEGRAM_BOT_TOKEN = (os.getenv("TELEGRAM_BOT_TOKEN", "") or "").strip()
TELEGRAM_CHANNEL_ID = (os.getenv("TELEGRAM_CHANNEL_ID", "") or "").strip()
BOT_USERNAME = os.getenv("BOT_USERNAME", "@DAC_CTO_bot").strip()

def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, default)).strip())
    except (TypeError, ValueError):
        return default

# Poll cadence in milliseconds (kept in ms for compatibility with existing deployments)
CHECK_INTERVAL = _env_int("CHECK_INTERVAL", 20000) or 20000
CHECK_INTERVAL_SECONDS = max(1.0, CHECK_INTERVAL / 1000.0)

DATABASE_FILE = os.getenv("DATABASE_FILE", "").strip() or str(BASE_DIR / "database.json")
LOG_FILE = os.getenv("LOG_FILE", "").strip() or "cto_hunter.log"
FOOTER_TEXT = os.getenv("FOOTER_TEXT", "Powered by @DigitalAssetClubEU").strip()

# --- API Endpoints ---
DEXSCREENER_API_URL = "https://api.dexscreener.com"
CTO_LATEST_URL = f"{DEXSCREENER_API_URL}/community-takeovers/latest/v1"
TOKEN_PAIRS_URL = f"{DEXSCREENER_API_URL}/latest/dex/tokens"
AXIOM_URL = "https://axiom.trade/"
MAESTRO_URL = "https://t.me/maestro"

# --- Configuration ---
CONFIG = {
    "HTTP_TIMEOUT": 10.0,
    "HTTP_RETRIES": 2,
    # DexScreener asks for gentle pacing on the token endpoint
    "DETAILS_DELAY_SECONDS": 1.0,
    "DETAILS_CACHE_TTL_SECONDS": 120,
    # Gap between two channel posts inside one run
    "DISPATCH_DELAY_SECONDS": 2.0,
    # First periodic check fires this many seconds after startup
    "FIRST_CHECK_DELAY_SECONDS": 1.0,
    "LIST_LIMIT": 10,
    # Telegram HTTP client tuning
    "TELEGRAM_POOL_SIZE": 8,
    "TELEGRAM_POOL_TIMEOUT": 30.0,
    "TELEGRAM_CONNECT_TIMEOUT": 20.0,
    "TELEGRAM_READ_TIMEOUT": 30.0,
    "TELEGRAM_SEND_ATTEMPTS": 4,
}

def parse_chat_id(raw: str):
    """Numeric ids become ints; '@channelname' style ids are kept as strings."""
    s = (raw or "").strip()
    if s.lstrip("-").isdigit():
        return int(s)
    return s

def missing_settings() -> List[str]:
    missing = []
    if not TELEGRAM_BOT_TOKEN:
        missing.append("TELEGRAM_BOT_TOKEN")
    if not TELEGRAM_CHANNEL_ID:
        missing.append("TELEGRAM_CHANNEL_ID")
    return missing
