import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from models.entitlement import (
    RedemptionOutcome,
    ValidationReason,
    ValidationResult,
)
from models.sql.code_redemption import CodeRedemptionModel
from services.code_generator import is_valid_format, normalize_code
from services.code_store import CodeStore, CommitResult
from services.code_validator import count_account_redemptions, validate_code
from services.rate_limiter import (
    RateLimitDecision,
    RedemptionRateLimiter,
    any_code_key,
    code_key,
)
from utils.get_env import env_int, get_redeem_max_commit_attempts_env

logger = logging.getLogger(__name__)

MAX_COMMIT_ATTEMPTS = max(1, env_int(get_redeem_max_commit_attempts_env(), 8))


class CommitContentionError(RuntimeError):
    """Commits kept failing while re-validation still accepted the redemption"""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EntitlementRedeemer:
    """
    Redeems codes for accounts.

    No lock is taken in-process; concurrent redemptions of the same code are
    arbitrated by the store's guarded increment and the unique ledger ordinal.
    """

    def __init__(
        self,
        store: CodeStore,
        rate_limiter: RedemptionRateLimiter,
        clock: Callable[[], datetime] = _utc_now,
        max_commit_attempts: int = None,
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.max_commit_attempts = max_commit_attempts or MAX_COMMIT_ATTEMPTS

    def _check_rate_limit(self, account_id: str, code: str) -> RateLimitDecision:
        blocked = [
            decision
            for decision in (
                self.rate_limiter.check(code_key(account_id, code)),
                self.rate_limiter.check(any_code_key(account_id)),
            )
            if not decision.allowed
        ]
        if not blocked:
            return RateLimitDecision(allowed=True)
        return max(blocked, key=lambda decision: decision.retry_after_seconds)

    def _record(self, account_id: str, code: Optional[str], success: bool) -> None:
        # Malformed input only counts against the account-wide key
        if code is not None:
            self.rate_limiter.record(code_key(account_id, code), success)
        self.rate_limiter.record(any_code_key(account_id), success)

    def _reject(self, account_id: str, code: str, reason: ValidationReason, **details) -> RedemptionOutcome:
        well_formed = reason is not ValidationReason.INVALID_FORMAT
        self._record(account_id, code if well_formed else None, success=False)
        logger.info(f"Redemption of {code} by {account_id} rejected: {reason.value}")
        return RedemptionOutcome.rejected(code, reason, **details)

    async def _load_and_validate(self, code: str, account_id: str):
        record = await self.store.get_by_key(code)
        prior = await self.store.list_redemptions(code, account_id) if record else []
        result = validate_code(code, record, self.clock(), account_id, prior)
        return record, prior, result

    async def preview(self, code_string: str, account_id: str) -> ValidationResult:
        """
        Validate without redeeming. Nothing durable is written, but failed
        previews count against the account's attempt budget.
        """
        code = normalize_code(code_string)
        decision = self._check_rate_limit(account_id, code)
        if not decision.allowed:
            return ValidationResult(
                reason=ValidationReason.RATE_LIMITED,
                retry_after_seconds=decision.retry_after_seconds,
            )
        if not is_valid_format(code):
            self._record(account_id, None, success=False)
            return ValidationResult(reason=ValidationReason.INVALID_FORMAT)

        _, _, result = await self._load_and_validate(code, account_id)
        if not result.valid:
            self._record(account_id, code, success=False)
        return result

    async def redeem(self, code_string: str, account_id: str) -> RedemptionOutcome:
        code = normalize_code(code_string)

        decision = self._check_rate_limit(account_id, code)
        if not decision.allowed:
            logger.warning(f"Redemption of {code} by {account_id} throttled")
            return RedemptionOutcome.rejected(
                code,
                ValidationReason.RATE_LIMITED,
                retry_after_seconds=decision.retry_after_seconds,
            )

        # Garbage input never reaches the store
        if not is_valid_format(code):
            return self._reject(account_id, code, ValidationReason.INVALID_FORMAT)

        for attempt in range(1, self.max_commit_attempts + 1):
            _, prior, result = await self._load_and_validate(code, account_id)
            if not result.valid:
                return self._reject(
                    account_id, code, result.reason, not_before=result.not_before
                )

            benefit = result.benefit
            now = self.clock()
            redemption = CodeRedemptionModel(
                code=code,
                account_id=account_id,
                ordinal=count_account_redemptions(code, account_id, prior) + 1,
                benefit_applied=benefit.describe(),
                redeemed_at=now,
            )
            commit = await self.store.commit_redemption(redemption)
            if commit is CommitResult.COMMITTED:
                break

            # CONFLICT: deactivated or filled up since the read.
            # DUPLICATE: a parallel request by this account took the ordinal.
            logger.warning(
                f"Redemption of {code} by {account_id} hit a commit {commit.value} "
                f"(attempt {attempt}/{self.max_commit_attempts}), re-validating"
            )
        else:
            raise CommitContentionError(
                f"Could not commit redemption of {code} after {self.max_commit_attempts} attempts"
            )

        # The usage is committed; finish the grant even if the caller goes away.
        await asyncio.shield(self.store.apply_benefit(account_id, benefit, code, now))
        self._record(account_id, code, success=True)
        logger.info(f"Code {code} redeemed by {account_id}: {benefit.describe()}")
        return RedemptionOutcome.redeemed(code, benefit)
