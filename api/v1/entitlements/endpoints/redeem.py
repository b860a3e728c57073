import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.v1.entitlements.dependencies import get_redeemer, get_request_account_id
from models.entitlement import REASON_MESSAGES, ValidationReason
from services.code_generator import normalize_code
from services.redeemer import EntitlementRedeemer
from utils.get_env import env_flag, get_redeem_collapse_revoked_codes_env

REDEEM_ROUTER = APIRouter(prefix="/redeem", tags=["Redeem"])

REASON_STATUS_CODES = {
    ValidationReason.VALID: 200,
    ValidationReason.INVALID_FORMAT: 400,
    ValidationReason.NOT_FOUND: 404,
    ValidationReason.DEACTIVATED: 403,
    ValidationReason.NOT_YET_ACTIVE: 403,
    ValidationReason.EXPIRED: 410,
    ValidationReason.GLOBAL_LIMIT_REACHED: 410,
    ValidationReason.ALREADY_REDEEMED: 409,
    ValidationReason.RATE_LIMITED: 429,
}


class RedeemCodeRequest(BaseModel):
    code: str


def public_reason(reason: ValidationReason) -> ValidationReason:
    # A revoked code and a typo look the same to the caller; logs keep the difference
    if reason is ValidationReason.DEACTIVATED and env_flag(
        get_redeem_collapse_revoked_codes_env(), True
    ):
        return ValidationReason.NOT_FOUND
    return reason


def _reason_response(
    code: str,
    reason: ValidationReason,
    message: Optional[str] = None,
    benefit=None,
    retry_after_seconds: Optional[float] = None,
    not_before: Optional[datetime] = None,
) -> JSONResponse:
    shown = public_reason(reason)
    content = {
        "success": reason is ValidationReason.VALID,
        "code": code,
        "error_code": None if reason is ValidationReason.VALID else shown.value,
        "message": message or REASON_MESSAGES[shown],
        "benefit": benefit.model_dump(mode="json") if benefit is not None else None,
        "retry_after_seconds": retry_after_seconds,
        "not_before": not_before.isoformat() if not_before is not None else None,
    }
    headers = {}
    if retry_after_seconds is not None:
        headers["Retry-After"] = str(max(1, math.ceil(retry_after_seconds)))
    return JSONResponse(
        status_code=REASON_STATUS_CODES[shown], content=content, headers=headers
    )


@REDEEM_ROUTER.post("")
async def redeem_code(
    payload: RedeemCodeRequest,
    request: Request,
    redeemer: EntitlementRedeemer = Depends(get_redeemer),
):
    account_id = get_request_account_id(request)
    outcome = await redeemer.redeem(payload.code, account_id)
    return _reason_response(
        outcome.code,
        outcome.reason,
        message="Code redeemed successfully." if outcome.success else None,
        benefit=outcome.benefit,
        retry_after_seconds=outcome.retry_after_seconds,
        not_before=outcome.not_before,
    )


@REDEEM_ROUTER.post("/validate")
async def validate_code(
    payload: RedeemCodeRequest,
    request: Request,
    redeemer: EntitlementRedeemer = Depends(get_redeemer),
):
    account_id = get_request_account_id(request)
    result = await redeemer.preview(payload.code, account_id)
    return _reason_response(
        normalize_code(payload.code),
        result.reason,
        benefit=result.benefit,
        retry_after_seconds=result.retry_after_seconds,
        not_before=result.not_before,
    )
