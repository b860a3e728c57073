from fastapi import APIRouter

from api.v1.entitlements.endpoints.codes import CODES_ROUTER
from api.v1.entitlements.endpoints.redeem import REDEEM_ROUTER


API_V1_ENTITLEMENTS_ROUTER = APIRouter(prefix="/api/v1/entitlements")

API_V1_ENTITLEMENTS_ROUTER.include_router(CODES_ROUTER)
API_V1_ENTITLEMENTS_ROUTER.include_router(REDEEM_ROUTER)
