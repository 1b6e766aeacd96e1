"""Bonus group ledger models: groups, their bundles, memberships and drafts."""

from typing import Any, Optional
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel, Column

GROUP_STATUS_ACTIVE = "active"
GROUP_STATUS_REDEEMED = "redeemed"


class BonusGroup(SQLModel, table=True):
    """
    A committed set of bundles that earns a bonus.
    Lifecycle: active (pending or redeemable, derived) -> redeemed (terminal)
    """
    __tablename__ = "bonus_group"

    id: Optional[int] = Field(default=None, primary_key=True)
    customer_id: int = Field(foreign_key="customer.id", index=True)

    # Snapshot of the settings rate at creation/update time, in percent
    discount_rate: Decimal = Field(max_digits=5, decimal_places=2)

    # Cached, recomputed on create/update and on eligibility changes
    total_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_discount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)

    # State machine; only services.ledger writes "redeemed"
    status: str = Field(default=GROUP_STATUS_ACTIVE, index=True)  # active, redeemed
    auto_created: bool = Field(default=False)  # created by the queue tracker

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None


class BonusBundle(SQLModel, table=True):
    """
    One accounting unit of a group. A bundle of several purchases still counts
    as a single unit toward the redemption threshold.
    """
    __tablename__ = "bonus_bundle"
    __table_args__ = (sa.UniqueConstraint("group_id", "bundle_index", name="uq_bonus_bundle_index"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="bonus_group.id", index=True)
    bundle_index: int


class BonusGroupPurchase(SQLModel, table=True):
    """
    Membership of a purchase in a bundle. purchase_id is unique table-wide,
    so a purchase can never sit in two groups, even across processes.
    """
    __tablename__ = "bonus_group_purchase"

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="bonus_group.id", index=True)
    bundle_id: int = Field(foreign_key="bonus_bundle.id", index=True)
    purchase_id: int = Field(foreign_key="purchase.id", unique=True, index=True)
    eligible_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    discount_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)


class BonusDraft(SQLModel, table=True):
    """
    Uncommitted bundles a staff member is assembling for one customer.
    Carries no monetary commitment; survives session breaks.
    """
    __tablename__ = "bonus_draft"

    customer_id: int = Field(foreign_key="customer.id", primary_key=True)
    bundles: Optional[Any] = Field(
        default=None, sa_column=Column(sa.JSON, nullable=True)
    )  # [{purchase_ids: [..], is_bundle: bool}]
    selected_purchase_ids: Optional[Any] = Field(
        default=None, sa_column=Column(sa.JSON, nullable=True)
    )
    editing_group_id: Optional[int] = None
    imported_indices: Optional[Any] = Field(
        default=None, sa_column=Column(sa.JSON, nullable=True)
    )
    imported_purchase_ids: Optional[Any] = Field(
        default=None, sa_column=Column(sa.JSON, nullable=True)
    )
    updated_at: datetime = Field(default_factory=datetime.utcnow)
