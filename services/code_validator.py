"""
Redemption decision for a single code.

Everything here is pure: the caller supplies the stored record, the clock
reading and the account's ledger, and gets back a tagged result. The
Redeemer runs it before committing and again after every commit conflict;
the HTTP layer runs it speculatively for UI feedback.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence

from models.entitlement import CodeStatus, ValidationReason, ValidationResult
from models.sql.code_redemption import CodeRedemptionModel
from models.sql.entitlement_code import EntitlementCodeModel
from services.code_generator import is_valid_format


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back naive
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_exhausted(record: EntitlementCodeModel) -> bool:
    return not record.is_unlimited and record.current_uses >= record.max_uses


def is_expired(record: EntitlementCodeModel, now: datetime) -> bool:
    # A code is already expired at exactly window_end
    window_end = as_utc(record.window_end)
    return window_end is not None and as_utc(now) >= window_end


def is_not_yet_active(record: EntitlementCodeModel, now: datetime) -> bool:
    window_start = as_utc(record.window_start)
    return window_start is not None and as_utc(now) < window_start


def derive_status(record: EntitlementCodeModel, now: datetime) -> CodeStatus:
    if not record.active:
        return CodeStatus.DEACTIVATED
    if is_expired(record, now):
        return CodeStatus.EXPIRED
    if is_exhausted(record):
        return CodeStatus.EXHAUSTED
    if is_not_yet_active(record, now):
        return CodeStatus.SCHEDULED
    return CodeStatus.ACTIVE


def count_account_redemptions(
    code: str, account_id: str, prior_redemptions: Sequence[CodeRedemptionModel]
) -> int:
    return sum(
        1
        for redemption in prior_redemptions
        if redemption.code == code and redemption.account_id == account_id
    )


def validate_code(
    code: str,
    record: Optional[EntitlementCodeModel],
    now: datetime,
    account_id: str,
    prior_redemptions: Sequence[CodeRedemptionModel] = (),
) -> ValidationResult:
    """
    Decide whether ``account_id`` may redeem ``code`` at ``now``.

    The first failing check wins, in this order: format, existence, manual
    deactivation, window start, window end, global limit, per-account limit.

    Args:
        code: Normalized code string as entered
        record: Stored code, or None when the store has no such key
        now: Current time (aware, or naive UTC)
        account_id: Redeeming account
        prior_redemptions: The account's ledger entries; entries for other
            codes or accounts are ignored

    Returns:
        ValidationResult carrying the benefit when the reason is VALID
    """
    if not is_valid_format(code):
        return ValidationResult(reason=ValidationReason.INVALID_FORMAT)
    if record is None:
        return ValidationResult(reason=ValidationReason.NOT_FOUND)
    if not record.active:
        return ValidationResult(reason=ValidationReason.DEACTIVATED)
    if is_not_yet_active(record, now):
        return ValidationResult(
            reason=ValidationReason.NOT_YET_ACTIVE,
            not_before=as_utc(record.window_start),
        )
    if is_expired(record, now):
        return ValidationResult(reason=ValidationReason.EXPIRED)
    if is_exhausted(record):
        return ValidationResult(reason=ValidationReason.GLOBAL_LIMIT_REACHED)

    redeemed = count_account_redemptions(record.code, account_id, prior_redemptions)
    if redeemed >= record.max_uses_per_account:
        return ValidationResult(reason=ValidationReason.ALREADY_REDEEMED)

    return ValidationResult(reason=ValidationReason.VALID, benefit=record.get_benefit())
