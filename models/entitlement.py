from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from utils.get_env import env_int, get_issue_max_batch_size_env


UNLIMITED_USES = -1
MAX_ISSUE_BATCH_SIZE = max(1, env_int(get_issue_max_batch_size_env(), 100))


class AccountRole(str, Enum):
    ADMIN = "admin"


class SubscriptionPlan(str, Enum):
    VOCA_UNLIMITED = "voca_unlimited"
    VOCA_SPEAKING = "voca_speaking"


class RoleGrant(BaseModel):
    kind: Literal["role-grant"] = "role-grant"
    role: AccountRole = AccountRole.ADMIN

    def describe(self) -> str:
        return f"{self.role.value} role"


class SubscriptionGrant(BaseModel):
    kind: Literal["subscription-grant"] = "subscription-grant"
    plan_id: SubscriptionPlan
    permanent: bool = True
    duration_days: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _require_duration_when_temporary(self):
        if not self.permanent and self.duration_days is None:
            raise ValueError("duration_days is required for a non-permanent subscription grant")
        return self

    def describe(self) -> str:
        if self.permanent:
            return f"{self.plan_id.value} subscription"
        return f"{self.plan_id.value} subscription for {self.duration_days} days"


Benefit = Annotated[Union[RoleGrant, SubscriptionGrant], Field(discriminator="kind")]
BENEFIT_ADAPTER: TypeAdapter = TypeAdapter(Benefit)


class EventWindow(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Bounds without an offset are taken as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _start_before_end(self):
        if self.start >= self.end:
            raise ValueError("event window start must be before its end")
        return self


class ValidationReason(str, Enum):
    VALID = "VALID"
    INVALID_FORMAT = "INVALID_FORMAT"
    NOT_FOUND = "NOT_FOUND"
    DEACTIVATED = "DEACTIVATED"
    NOT_YET_ACTIVE = "NOT_YET_ACTIVE"
    EXPIRED = "EXPIRED"
    GLOBAL_LIMIT_REACHED = "GLOBAL_LIMIT_REACHED"
    ALREADY_REDEEMED = "ALREADY_REDEEMED"
    RATE_LIMITED = "RATE_LIMITED"


REASON_MESSAGES = {
    ValidationReason.VALID: "Code is valid.",
    ValidationReason.INVALID_FORMAT: "Invalid code format.",
    ValidationReason.NOT_FOUND: "Code not found.",
    ValidationReason.DEACTIVATED: "This code has been deactivated.",
    ValidationReason.NOT_YET_ACTIVE: "This code is not active yet.",
    ValidationReason.EXPIRED: "This code has expired.",
    ValidationReason.GLOBAL_LIMIT_REACHED: "This code has reached its usage limit.",
    ValidationReason.ALREADY_REDEEMED: "You've already redeemed this code.",
    ValidationReason.RATE_LIMITED: "Too many attempts. Please try again later.",
}


class CodeStatus(str, Enum):
    """Listing status, always derived from the stored counters and the clock"""

    ACTIVE = "active"
    SCHEDULED = "scheduled"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class ValidationResult(BaseModel):
    reason: ValidationReason
    benefit: Optional[Benefit] = None
    not_before: Optional[datetime] = None
    retry_after_seconds: Optional[float] = None

    @property
    def valid(self) -> bool:
        return self.reason is ValidationReason.VALID


class RedemptionOutcome(BaseModel):
    success: bool
    reason: ValidationReason
    code: str
    benefit: Optional[Benefit] = None
    retry_after_seconds: Optional[float] = None
    not_before: Optional[datetime] = None

    @classmethod
    def rejected(cls, code: str, reason: ValidationReason, **details):
        return cls(success=False, reason=reason, code=code, **details)

    @classmethod
    def redeemed(cls, code: str, benefit):
        return cls(success=True, reason=ValidationReason.VALID, code=code, benefit=benefit)


class IssueRequest(BaseModel):
    benefit: Benefit
    window: Optional[EventWindow] = None
    expires_in_days: Optional[int] = Field(default=None, ge=1)
    max_uses: int = 1
    max_uses_per_account: int = Field(default=1, ge=1)
    description: str = ""
    count: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _check_limits(self):
        if self.max_uses != UNLIMITED_USES and self.max_uses < 1:
            raise ValueError("max_uses must be -1 (unlimited) or at least 1")
        if self.count > MAX_ISSUE_BATCH_SIZE:
            raise ValueError(f"count must be at most {MAX_ISSUE_BATCH_SIZE}")
        if self.window is not None and self.expires_in_days is not None:
            raise ValueError("Use either window or expires_in_days, not both")
        if isinstance(self.benefit, SubscriptionGrant) and self.window is None:
            raise ValueError("Promotional codes require an event window")
        return self


class IssueResult(BaseModel):
    codes: List[str]
    failed: int = 0


class MalformedCodeRecordError(RuntimeError):
    """Stored code data that no longer parses; an infrastructure failure, not a validation outcome"""
