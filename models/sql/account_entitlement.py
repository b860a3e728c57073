from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class AccountEntitlementModel(SQLModel, table=True):
    __tablename__ = "account_entitlements"

    account_id: str = Field(primary_key=True)
    role: Optional[str] = Field(default=None, nullable=True)
    plan_id: Optional[str] = Field(default=None, nullable=True)
    # None with a plan_id means the subscription is permanent
    subscription_expires_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    source_code: Optional[str] = Field(default=None, nullable=True)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
