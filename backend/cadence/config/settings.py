"""Application-wide configuration loaded from environment variables."""

import os

from dotenv import load_dotenv

load_dotenv()

# Redis
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")

# Home timezone used for every date key (server and client must agree)
HOME_TIMEZONE: str = os.getenv("HOME_TIMEZONE", "Asia/Seoul")

# ── Event Ledger ─────────────────────────────────────────────────────────

# Deletes per transactional pipeline during cascade deletion
EVENT_DELETE_BATCH_LIMIT: int = int(os.getenv("EVENT_DELETE_BATCH_LIMIT", "450"))

# ── Routines ─────────────────────────────────────────────────────────────

ROUTINE_STREAK_GRACE_DAYS: int = int(os.getenv("ROUTINE_STREAK_GRACE_DAYS", "2"))

# ── Weekly Coach ─────────────────────────────────────────────────────────

COACH_ACTION_MAX_LEN: int = int(os.getenv("COACH_ACTION_MAX_LEN", "80"))
COACH_ACTION_SHORT_LEN: int = int(os.getenv("COACH_ACTION_SHORT_LEN", "20"))

# ── Text-rewrite oracle ──────────────────────────────────────────────────

ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
REWRITE_MODEL: str = os.getenv("REWRITE_MODEL", "claude-sonnet-4-5-20250929")
REWRITE_MAX_TOKENS: int = int(os.getenv("REWRITE_MAX_TOKENS", "512"))
REWRITE_CACHE_TTL: int = int(os.getenv("REWRITE_CACHE_TTL", "86400"))  # 1 day

# ── Server Configuration ─────────────────────────────────────────────────

SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
