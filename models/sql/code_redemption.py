import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class CodeRedemptionModel(SQLModel, table=True):
    __tablename__ = "code_redemptions"
    # ordinal is 1..max_uses_per_account, so the constraint caps the ledger
    # even when two requests from the same account race.
    __table_args__ = (
        UniqueConstraint("code", "account_id", "ordinal", name="uq_code_account_ordinal"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    code: str = Field(foreign_key="entitlement_codes.code", index=True, nullable=False)
    account_id: str = Field(index=True, nullable=False)
    ordinal: int = Field(default=1, nullable=False)
    benefit_applied: str = Field(nullable=False)
    redeemed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
