from typing import Optional

from fastapi import HTTPException, Request

from services.code_issuer import CodeIssuer
from services.code_store import CodeStore
from services.database import get_session_factory
from services.rate_limiter import get_rate_limiter
from services.redeemer import EntitlementRedeemer

_code_store: Optional[CodeStore] = None
_redeemer: Optional[EntitlementRedeemer] = None
_code_issuer: Optional[CodeIssuer] = None


def get_request_account_id(request: Request) -> str:
    """Account behind the request; authentication happens upstream"""
    raw_account_id = request.headers.get("x-user-id") or request.headers.get("x-session-id")
    raw_account_id = (raw_account_id or "").strip()
    if not raw_account_id:
        raise HTTPException(status_code=401, detail="Missing x-user-id header.")
    return raw_account_id


def get_code_store() -> CodeStore:
    global _code_store
    if _code_store is None:
        _code_store = CodeStore(get_session_factory())
    return _code_store


def get_redeemer() -> EntitlementRedeemer:
    global _redeemer
    if _redeemer is None:
        _redeemer = EntitlementRedeemer(get_code_store(), get_rate_limiter())
    return _redeemer


def get_code_issuer() -> CodeIssuer:
    global _code_issuer
    if _code_issuer is None:
        _code_issuer = CodeIssuer(get_code_store())
    return _code_issuer
