import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from models.entitlement import RoleGrant, SubscriptionGrant, UNLIMITED_USES
from models.sql.account_entitlement import AccountEntitlementModel
from models.sql.code_redemption import CodeRedemptionModel
from models.sql.entitlement_code import EntitlementCodeModel
from services.code_validator import as_utc
from utils.get_env import env_int, get_store_retry_attempts_env

logger = logging.getLogger(__name__)

STORE_RETRY_ATTEMPTS = max(1, env_int(get_store_retry_attempts_env(), 3))
TRANSIENT_STORE_ERRORS = (OperationalError, InterfaceError, DisconnectionError)

# Network blips and lock timeouts only; validation outcomes never reach here.
transient_retry = retry(
    retry=retry_if_exception_type(TRANSIENT_STORE_ERRORS),
    stop=stop_after_attempt(STORE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.1, max=2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class CommitResult(str, Enum):
    COMMITTED = "committed"
    CONFLICT = "conflict"
    DUPLICATE = "duplicate"


class CodeStore:
    """
    Repository over the entitlement tables.

    Every method opens its own session so concurrent redemptions never share
    a transaction. The code row is only ever written through
    ``conditional_update`` (guarded on the observed ``current_uses``),
    ``commit_redemption`` (guarded on ``active`` and the global limit) and
    ``set_field``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @transient_retry
    async def get_by_key(self, code: str) -> Optional[EntitlementCodeModel]:
        async with self.session_factory() as sql_session:
            return await sql_session.get(EntitlementCodeModel, code)

    @transient_retry
    async def list_where(self, *criteria) -> List[EntitlementCodeModel]:
        query = select(EntitlementCodeModel)
        if criteria:
            query = query.where(*criteria)
        query = query.order_by(EntitlementCodeModel.created_at.desc())
        async with self.session_factory() as sql_session:
            result = await sql_session.execute(query)
            return list(result.scalars().all())

    @transient_retry
    async def list_redemptions(
        self, code: str, account_id: Optional[str] = None
    ) -> List[CodeRedemptionModel]:
        query = select(CodeRedemptionModel).where(CodeRedemptionModel.code == code)
        if account_id is not None:
            query = query.where(CodeRedemptionModel.account_id == account_id)
        query = query.order_by(CodeRedemptionModel.redeemed_at)
        async with self.session_factory() as sql_session:
            result = await sql_session.execute(query)
            return list(result.scalars().all())

    @transient_retry
    async def create(self, record: EntitlementCodeModel) -> bool:
        """Insert a new code; False when the code string is already taken"""
        async with self.session_factory() as sql_session:
            return await self._insert(sql_session, record)

    @staticmethod
    def _compare_and_swap(code: str, expected_current_uses: int, values: dict):
        return (
            update(EntitlementCodeModel)
            .where(
                EntitlementCodeModel.code == code,
                EntitlementCodeModel.current_uses == expected_current_uses,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def _insert(sql_session: AsyncSession, record) -> bool:
        sql_session.add(record)
        try:
            await sql_session.commit()
        except IntegrityError:
            await sql_session.rollback()
            return False
        return True

    @transient_retry
    async def conditional_update(
        self, code: str, expected_current_uses: int, values: dict
    ) -> bool:
        """Apply values only if current_uses still equals the observed value"""
        async with self.session_factory() as sql_session:
            result = await sql_session.execute(
                self._compare_and_swap(code, expected_current_uses, values)
            )
            if result.rowcount != 1:
                await sql_session.rollback()
                return False
            await sql_session.commit()
            return True

    @transient_retry
    async def append_redemption_record(self, record: CodeRedemptionModel) -> bool:
        """Insert a ledger entry on its own; False when the ordinal is taken"""
        async with self.session_factory() as sql_session:
            return await self._insert(sql_session, record)

    @transient_retry
    async def commit_redemption(self, redemption: CodeRedemptionModel) -> CommitResult:
        """
        Increment current_uses and append the ledger entry in one transaction.

        The increment is guarded in the database on the kill switch and the
        global limit, so concurrent redeemers of a code with capacity left
        all get through without re-reading. A CONFLICT means the code was
        deactivated or filled up since it was read; the caller should
        re-validate. DUPLICATE means the account's ledger already holds this
        ordinal and nothing was written.
        """
        statement = (
            update(EntitlementCodeModel)
            .where(
                EntitlementCodeModel.code == redemption.code,
                EntitlementCodeModel.active == True,  # noqa: E712
                or_(
                    EntitlementCodeModel.max_uses == UNLIMITED_USES,
                    EntitlementCodeModel.current_uses < EntitlementCodeModel.max_uses,
                ),
            )
            .values(current_uses=EntitlementCodeModel.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as sql_session:
            result = await sql_session.execute(statement)
            if result.rowcount != 1:
                await sql_session.rollback()
                return CommitResult.CONFLICT
            if not await self._insert(sql_session, redemption):
                return CommitResult.DUPLICATE
            return CommitResult.COMMITTED

    @transient_retry
    async def set_field(self, code: str, field: str, value) -> bool:
        """Set one column on an existing code; False when the code does not exist"""
        statement = (
            update(EntitlementCodeModel)
            .where(EntitlementCodeModel.code == code)
            .values({field: value})
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as sql_session:
            result = await sql_session.execute(statement)
            if result.rowcount != 1:
                await sql_session.rollback()
                return False
            await sql_session.commit()
            return True

    @transient_retry
    async def get_account_entitlement(
        self, account_id: str
    ) -> Optional[AccountEntitlementModel]:
        async with self.session_factory() as sql_session:
            return await sql_session.get(AccountEntitlementModel, account_id)

    @transient_retry
    async def apply_benefit(
        self, account_id: str, benefit, code: str, now: datetime
    ) -> AccountEntitlementModel:
        """
        Grant benefit to the account. Safe to repeat: a second application of
        the same grant writes the same values.
        """
        async with self.session_factory() as sql_session:
            entry = await sql_session.get(AccountEntitlementModel, account_id)
            if entry is None:
                entry = AccountEntitlementModel(account_id=account_id)

            if isinstance(benefit, RoleGrant):
                entry.role = benefit.role.value
            elif isinstance(benefit, SubscriptionGrant):
                entry.plan_id = benefit.plan_id.value
                entry.source_code = code
                entry.subscription_expires_at = (
                    None
                    if benefit.permanent
                    else as_utc(now) + timedelta(days=benefit.duration_days)
                )
            else:
                raise TypeError(f"Unknown benefit kind: {benefit!r}")

            entry.updated_at = datetime.now(timezone.utc)
            sql_session.add(entry)
            try:
                await sql_session.commit()
            except IntegrityError:
                # Another grant created the row first; apply on top of it.
                await sql_session.rollback()
                return await self.apply_benefit(account_id, benefit, code, now)
            await sql_session.refresh(entry)
            return entry
