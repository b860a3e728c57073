import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from fastapi import HTTPException

from models.entitlement import IssueRequest, IssueResult
from models.sql.code_redemption import CodeRedemptionModel
from models.sql.entitlement_code import EntitlementCodeModel
from services.code_generator import generate_code, normalize_code, prefix_for_benefit
from services.code_store import CodeStore
from utils.get_env import env_int, get_issue_max_collision_retries_env

logger = logging.getLogger(__name__)

MAX_COLLISION_RETRIES = max(1, env_int(get_issue_max_collision_retries_env(), 5))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CodeIssuer:
    """Admin-side operations: mint, deactivate and list codes"""

    def __init__(
        self,
        store: CodeStore,
        clock: Callable[[], datetime] = _utc_now,
        generator: Callable[[str], str] = generate_code,
        max_collision_retries: int = None,
    ):
        self.store = store
        self.clock = clock
        self.generator = generator
        self.max_collision_retries = max_collision_retries or MAX_COLLISION_RETRIES

    def _window(self, request: IssueRequest, now: datetime):
        if request.window is not None:
            return request.window.start, request.window.end
        if request.expires_in_days is not None:
            return now, now + timedelta(days=request.expires_in_days)
        return None, None

    async def _issue_one(self, request: IssueRequest, created_by: str, now: datetime) -> Optional[str]:
        prefix = prefix_for_benefit(request.benefit)
        window_start, window_end = self._window(request, now)
        for attempt in range(1, self.max_collision_retries + 1):
            code = self.generator(prefix)
            record = EntitlementCodeModel(
                code=code,
                benefit=request.benefit.model_dump(mode="json"),
                max_uses=request.max_uses,
                max_uses_per_account=request.max_uses_per_account,
                description=request.description,
                window_start=window_start,
                window_end=window_end,
                created_by=created_by,
                created_at=now,
            )
            if await self.store.create(record):
                return code
            logger.warning(f"Generated code {code} already exists (attempt {attempt})")
        return None

    async def issue(self, request: IssueRequest, created_by: str) -> IssueResult:
        """
        Mint request.count codes. An item that keeps colliding is counted in
        ``failed`` and the rest of the batch still goes through.
        """
        now = self.clock()
        codes: List[str] = []
        failed = 0
        for _ in range(request.count):
            code = await self._issue_one(request, created_by, now)
            if code is None:
                failed += 1
                logger.error(
                    f"Gave up issuing a code for {created_by} after "
                    f"{self.max_collision_retries} collisions"
                )
            else:
                codes.append(code)

        logger.info(
            f"Issued {len(codes)} {request.benefit.kind} code(s) for {created_by}"
            + (f", {failed} failed" if failed else "")
        )
        return IssueResult(codes=codes, failed=failed)

    async def deactivate(self, code: str) -> None:
        normalized_code = normalize_code(code)
        if not await self.store.set_field(normalized_code, "active", False):
            raise HTTPException(status_code=404, detail="Code not found.")
        logger.info(f"Code {normalized_code} deactivated")

    async def get_code(self, code: str) -> EntitlementCodeModel:
        record = await self.store.get_by_key(normalize_code(code))
        if record is None:
            raise HTTPException(status_code=404, detail="Code not found.")
        return record

    async def list_active(self) -> List[EntitlementCodeModel]:
        return await self.store.list_where(EntitlementCodeModel.active == True)  # noqa: E712

    async def list_codes(self) -> List[EntitlementCodeModel]:
        return await self.store.list_where()

    async def list_redemptions(self, code: str) -> List[CodeRedemptionModel]:
        record = await self.get_code(code)
        return await self.store.list_redemptions(record.code)
