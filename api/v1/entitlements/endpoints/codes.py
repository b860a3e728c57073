from datetime import datetime

from fastapi import APIRouter, Depends, Request

from api.v1.entitlements.dependencies import get_code_issuer, get_request_account_id
from models.entitlement import IssueRequest
from models.sql.entitlement_code import EntitlementCodeModel
from services.code_generator import normalize_code
from services.code_issuer import CodeIssuer
from services.code_validator import as_utc, derive_status


CODES_ROUTER = APIRouter(prefix="/codes", tags=["Entitlement codes"])


def _code_payload(record: EntitlementCodeModel, now: datetime) -> dict:
    return {
        "code": record.code,
        "benefit": record.benefit,
        "status": derive_status(record, now).value,
        "active": record.active,
        "max_uses": record.max_uses,
        "max_uses_per_account": record.max_uses_per_account,
        "current_uses": record.current_uses,
        "window_start": as_utc(record.window_start),
        "window_end": as_utc(record.window_end),
        "description": record.description,
        "created_by": record.created_by,
        "created_at": as_utc(record.created_at),
    }


@CODES_ROUTER.post("")
async def issue_codes(
    payload: IssueRequest,
    request: Request,
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    created_by = get_request_account_id(request)
    result = await issuer.issue(payload, created_by)
    return {"created_by": created_by, **result.model_dump()}


@CODES_ROUTER.get("")
async def list_codes(
    active_only: bool = False,
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    records = await issuer.list_active() if active_only else await issuer.list_codes()
    now = issuer.clock()
    return {"codes": [_code_payload(record, now) for record in records]}


@CODES_ROUTER.get("/{code}")
async def get_code(
    code: str,
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    record = await issuer.get_code(code)
    return _code_payload(record, issuer.clock())


@CODES_ROUTER.get("/{code}/redemptions")
async def list_code_redemptions(
    code: str,
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    redemptions = await issuer.list_redemptions(code)
    return {
        "code": normalize_code(code),
        "redemptions": [
            {
                "account_id": redemption.account_id,
                "redeemed_at": as_utc(redemption.redeemed_at),
                "benefit_applied": redemption.benefit_applied,
            }
            for redemption in redemptions
        ],
    }


@CODES_ROUTER.post("/{code}/deactivate")
async def deactivate_code(
    code: str,
    issuer: CodeIssuer = Depends(get_code_issuer),
):
    await issuer.deactivate(code)
    return {"code": normalize_code(code), "active": False}
