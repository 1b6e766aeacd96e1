"""Global bonus program settings (singleton row)."""

from typing import Optional
from datetime import datetime
from decimal import Decimal
from sqlmodel import Field, SQLModel

SETTINGS_KEY = "default"


class BonusSettings(SQLModel, table=True):
    """
    Program-wide settings. Groups snapshot discount_rate when created,
    so changing it never alters existing groups.
    """
    __tablename__ = "bonus_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(default=SETTINGS_KEY, unique=True, index=True)
    discount_rate: Decimal = Field(default=Decimal("10"), max_digits=5, decimal_places=2)  # percent
    orders_required_for_discount: int = Field(default=3)
    auto_create_discount: bool = Field(default=True)
    updated_at: Optional[datetime] = None
