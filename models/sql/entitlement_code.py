from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from models.entitlement import BENEFIT_ADAPTER, UNLIMITED_USES, MalformedCodeRecordError


class EntitlementCodeModel(SQLModel, table=True):
    __tablename__ = "entitlement_codes"

    # Admin-managed fields:
    # - code: PREFIX-XXX-YYY, upper-case, the public identifier
    # - benefit: tagged JSON, see models.entitlement.Benefit
    # - max_uses: total redemptions, -1 for unlimited
    # - window_start / window_end: optional validity interval
    code: str = Field(primary_key=True, index=True, nullable=False)
    benefit: dict = Field(sa_column=Column(JSON, nullable=False))
    max_uses: int = Field(default=1, nullable=False)
    max_uses_per_account: int = Field(default=1, nullable=False)
    description: str = Field(default="", nullable=False)
    window_start: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    window_end: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_by: str = Field(nullable=False)

    # Mutated only by redemption (current_uses) and deactivation (active).
    current_uses: int = Field(default=0, nullable=False)
    active: bool = Field(default=True, index=True, nullable=False)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    @property
    def is_unlimited(self) -> bool:
        return self.max_uses == UNLIMITED_USES

    def get_benefit(self):
        try:
            return BENEFIT_ADAPTER.validate_python(self.benefit)
        except ValidationError as exc:
            raise MalformedCodeRecordError(
                f"Stored benefit for {self.code} is malformed"
            ) from exc
