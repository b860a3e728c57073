import os
from utils.get_env import (
    env_flag,
    get_allow_sqlite_fallback_env,
    get_app_data_directory_env,
    get_database_url_env,
    get_supabase_db_url_env,
)
from urllib.parse import urlsplit, urlunsplit, parse_qsl
import ssl

DEFAULT_APP_DATA_DIRECTORY = "/tmp/voca-entitlements"


def to_async_driver_url(database_url: str) -> str:
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return database_url


def get_database_url_and_connect_args() -> tuple[str, dict]:
    database_url = get_supabase_db_url_env() or get_database_url_env()
    if not database_url:
        if env_flag(get_allow_sqlite_fallback_env(), False):
            app_data_directory = get_app_data_directory_env() or DEFAULT_APP_DATA_DIRECTORY
            os.makedirs(app_data_directory, exist_ok=True)
            database_url = "sqlite:///" + os.path.join(app_data_directory, "entitlements.db")
        else:
            raise RuntimeError(
                "No database URL configured. Set DATABASE_URL or SUPABASE_DB_URL, "
                "or ALLOW_SQLITE_FALLBACK=true for local development."
            )

    database_url = to_async_driver_url(database_url)

    try:
        split_result = urlsplit(database_url)
    except ValueError as exc:
        raise RuntimeError(
            "Database URL is malformed. If your password has special characters "
            "(@, :, /, ?, #, [, ]), URL-encode it before putting it in DATABASE_URL."
        ) from exc

    connect_args = {}
    if split_result.scheme.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        return database_url, connect_args

    hostname = split_result.hostname
    if not hostname:
        raise RuntimeError("Database URL is invalid: hostname is missing.")
    if "<" in hostname or ">" in hostname:
        raise RuntimeError(
            "Database URL contains placeholder hostname. "
            "Replace it with the real database host."
        )

    # asyncpg does not understand libpq query parameters; translate sslmode
    # into an SSL context and strip the query string.
    query_params = parse_qsl(split_result.query, keep_blank_values=True)
    sslmode = None
    for k, v in query_params:
        if k.lower() == "sslmode":
            sslmode = v.lower()
    if sslmode is None and hostname.endswith("supabase.co"):
        sslmode = "require"
    if sslmode is not None and sslmode != "disable":
        connect_args["ssl"] = ssl.create_default_context()

    if split_result.query:
        database_url = urlunsplit(
            (
                split_result.scheme,
                split_result.netloc,
                split_result.path,
                "",
                split_result.fragment,
            )
        )

    return database_url, connect_args
