from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI

from services.database import create_db_and_tables
from utils.config_validator import setup_config_logging
from utils.get_env import (
    env_flag,
    env_int,
    get_db_startup_timeout_seconds_env,
    get_strict_startup_checks_env,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(_: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Reports configuration and makes sure the entitlement tables exist.

    """
    setup_config_logging()
    strict_startup_checks = env_flag(get_strict_startup_checks_env(), False)

    # DB init can hang when networking/env is misconfigured.
    # Set STRICT_STARTUP_CHECKS=true to fail fast instead.
    db_startup_timeout_seconds = env_int(get_db_startup_timeout_seconds_env(), 20)
    try:
        await asyncio.wait_for(create_db_and_tables(), timeout=db_startup_timeout_seconds)
    except Exception as e:
        if strict_startup_checks:
            raise
        logger.warning(f"Startup DB warning: {e}")
    yield
