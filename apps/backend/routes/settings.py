"""Bonus settings routes."""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel.ext.asyncio.session import AsyncSession

from database import get_session
from services.settings import get_settings, settings_to_dict, update_settings

router = APIRouter(prefix="/settings", tags=["settings"])


class BonusSettingsUpdate(BaseModel):
    discount_rate: Optional[Decimal] = None
    orders_required_for_discount: Optional[int] = None
    auto_create_discount: Optional[bool] = None


@router.get("/bonus")
async def get_bonus_settings(session: AsyncSession = Depends(get_session)):
    settings = await get_settings(session)
    await session.commit()
    return settings_to_dict(settings)


@router.put("/bonus")
async def put_bonus_settings(body: BonusSettingsUpdate, session: AsyncSession = Depends(get_session)):
    """Partial update; existing groups keep the rate they were created with."""
    settings = await update_settings(
        session,
        discount_rate=body.discount_rate,
        orders_required_for_discount=body.orders_required_for_discount,
        auto_create_discount=body.auto_create_discount,
    )
    return settings_to_dict(settings)
