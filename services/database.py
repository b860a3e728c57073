from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from models.sql.account_entitlement import AccountEntitlementModel
from models.sql.code_redemption import CodeRedemptionModel
from models.sql.entitlement_code import EntitlementCodeModel
from utils.db_utils import get_database_url_and_connect_args


ENTITLEMENT_TABLES = [
    EntitlementCodeModel.__table__,
    CodeRedemptionModel.__table__,
    AccountEntitlementModel.__table__,
]

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(database_url: str, connect_args: Optional[dict] = None) -> AsyncEngine:
    kwargs = {"connect_args": connect_args or {}}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return create_async_engine(database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Get or create the process-wide engine from the configured database URL"""
    global _engine
    if _engine is None:
        database_url, connect_args = get_database_url_and_connect_args()
        _engine = build_engine(database_url, connect_args)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(
            lambda sync_conn: SQLModel.metadata.create_all(
                sync_conn, tables=ENTITLEMENT_TABLES
            )
        )


async def create_db_and_tables() -> None:
    await create_tables(get_engine())
