# coachhq/config.py
import os, logging

# ── Helpers ───────────────────────────────────────────────────────────────────
def _split_csv(env_val: str) -> list[str]:
    return [x.strip() for x in (env_val or "").split(",") if x.strip()]

def _int_list(env_val: str, default: list[int]) -> list[int]:
    items = _split_csv(env_val)
    if not items:
        return list(default)
    return [int(x) for x in items]

# ── Database ─────────────────────────────────────────────────────────────────
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///coachhq.db")

# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ── Civil time (fixed offset, no DST) ────────────────────────────────────────
TZ_OFFSET  = os.environ.get("TZ_OFFSET", "-07:00")
WEEK_START = int(os.environ.get("WEEK_START", "0"))  # 0=Mon .. 6=Sun

# ── Reminder policy ──────────────────────────────────────────────────────────
SESSION_REMINDER_HOURS = _int_list(os.environ.get("SESSION_REMINDER_HOURS", ""), [48, 24, 6])
FOLLOW_UP_DAYS         = int(os.environ.get("FOLLOW_UP_DAYS", "3"))

# ── Dashboard ────────────────────────────────────────────────────────────────
DASHBOARD_LOOKAHEAD_DAYS = int(os.environ.get("DASHBOARD_LOOKAHEAD_DAYS", "90"))

# ── Group sessions ───────────────────────────────────────────────────────────
GROUP_DEFAULT_MAX_PLAYERS = int(os.environ.get("GROUP_DEFAULT_MAX_PLAYERS", "12"))
GROUP_DEFAULT_PRICE       = os.environ.get("GROUP_DEFAULT_PRICE", "50")

# ── Startup logging ──────────────────────────────────────────────────────────
logger = logging.getLogger(__name__)
logger.info(
    "[CONFIG] Loaded TZ_OFFSET=%s WEEK_START=%s SESSION_REMINDER_HOURS=%s FOLLOW_UP_DAYS=%s",
    TZ_OFFSET, WEEK_START, SESSION_REMINDER_HOURS, FOLLOW_UP_DAYS,
)
