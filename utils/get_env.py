from dotenv import load_dotenv
from pathlib import Path
import os
ROOT_DIR = Path(__file__).resolve().parents[1]
# Load both potential env locations:
# 1) workspace root: one level above the service checkout
# 2) service root: next to server.py (local override)
load_dotenv(ROOT_DIR.parent / ".env")
load_dotenv(ROOT_DIR / ".env", override=True)


def get_database_url_env():
    return os.getenv("DATABASE_URL")

def get_supabase_db_url_env():
    return os.getenv("SUPABASE_DB_URL") or os.getenv("supabase_db_url")

def get_allow_sqlite_fallback_env():
    return os.getenv("ALLOW_SQLITE_FALLBACK")


def get_app_data_directory_env():
    return os.getenv("APP_DATA_DIRECTORY")


def get_strict_startup_checks_env():
    return os.getenv("STRICT_STARTUP_CHECKS")


def get_db_startup_timeout_seconds_env():
    return os.getenv("DB_STARTUP_TIMEOUT_SECONDS")


def get_redeem_rate_limit_enabled_env():
    return os.getenv("REDEEM_RATE_LIMIT_ENABLED")


def get_redeem_rate_limit_max_failures_env():
    return os.getenv("REDEEM_RATE_LIMIT_MAX_FAILURES")


def get_redeem_rate_limit_any_code_max_failures_env():
    return os.getenv("REDEEM_RATE_LIMIT_ANY_CODE_MAX_FAILURES")


def get_redeem_rate_limit_window_seconds_env():
    return os.getenv("REDEEM_RATE_LIMIT_WINDOW_SECONDS")


def get_redeem_rate_limit_cooldown_seconds_env():
    return os.getenv("REDEEM_RATE_LIMIT_COOLDOWN_SECONDS")


def get_redeem_max_commit_attempts_env():
    return os.getenv("REDEEM_MAX_COMMIT_ATTEMPTS")


# Report DEACTIVATED as NOT_FOUND to callers
def get_redeem_collapse_revoked_codes_env():
    return os.getenv("REDEEM_COLLAPSE_REVOKED_CODES")


def get_issue_max_batch_size_env():
    return os.getenv("ISSUE_MAX_BATCH_SIZE")


def get_issue_max_collision_retries_env():
    return os.getenv("ISSUE_MAX_COLLISION_RETRIES")


def get_store_retry_attempts_env():
    return os.getenv("STORE_RETRY_ATTEMPTS")


def env_int(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except Exception:
        return default


def env_flag(value: str | None, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}
