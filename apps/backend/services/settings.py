"""Settings collaborator: the global bonus program configuration."""

import logging
import os
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from exceptions import ConflictError, DatabaseError, ValidationError
from models.settings import BonusSettings, SETTINGS_KEY

logger = logging.getLogger(__name__)

DEFAULT_DISCOUNT_RATE = Decimal(os.getenv("BONUS_DEFAULT_DISCOUNT_RATE", "10"))
DEFAULT_ORDERS_REQUIRED = int(os.getenv("BONUS_DEFAULT_ORDERS_REQUIRED", "3"))
DEFAULT_AUTO_CREATE = os.getenv("BONUS_DEFAULT_AUTO_CREATE", "true").lower() == "true"

# A group needs at least two purchases, so the threshold can't go below that
MIN_ORDERS_REQUIRED = 2


def parse_rate(value: Any) -> Decimal:
    """Validate a discount rate in percent (0..100)."""
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Discount rate must be a number", detail={"discount_rate": str(value)})
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationError(
            "Discount rate must be between 0 and 100",
            detail={"discount_rate": str(value)},
        )
    return rate


def _default_settings() -> BonusSettings:
    return BonusSettings(
        key=SETTINGS_KEY,
        discount_rate=DEFAULT_DISCOUNT_RATE,
        orders_required_for_discount=DEFAULT_ORDERS_REQUIRED,
        auto_create_discount=DEFAULT_AUTO_CREATE,
    )


async def _load_settings(session: AsyncSession) -> Optional[BonusSettings]:
    result = await session.exec(select(BonusSettings).where(BonusSettings.key == SETTINGS_KEY))
    return result.first()


async def _seed_settings(session: AsyncSession) -> BonusSettings:
    settings = _default_settings()
    session.add(settings)
    try:
        await session.flush()
    except IntegrityError as e:
        await session.rollback()
        logger.warning("Settings row created concurrently")
        raise ConflictError("Bonus settings were initialized concurrently, please retry") from e
    return settings


async def get_settings(session: AsyncSession) -> BonusSettings:
    """
    Return the settings singleton, creating it with the environment defaults
    on first use. Only flushes, so callers inside a transaction keep atomicity.

    Raises:
        ConflictError: another transaction created the row at the same time
    """
    settings = await _load_settings(session)
    if settings is None:
        settings = await _seed_settings(session)
    return settings


async def ensure_settings(session: AsyncSession) -> BonusSettings:
    """
    Create the settings row in its own transaction if it is missing.
    Run at startup so request transactions find it in place.
    """
    settings = await _load_settings(session)
    if settings is not None:
        return settings
    session.add(_default_settings())
    try:
        await session.commit()
    except IntegrityError:
        # another worker seeded it first
        await session.rollback()
    except SQLAlchemyError as e:
        await session.rollback()
        raise DatabaseError("Failed to create bonus settings") from e
    settings = await _load_settings(session)
    logger.info("Bonus settings ready", extra={"discount_rate": str(settings.discount_rate)})
    return settings


async def update_settings(
    session: AsyncSession,
    discount_rate: Optional[Any] = None,
    orders_required_for_discount: Optional[int] = None,
    auto_create_discount: Optional[bool] = None,
) -> BonusSettings:
    """Partial update of the settings singleton. Existing groups keep their snapshot rate."""
    if orders_required_for_discount is not None and orders_required_for_discount < MIN_ORDERS_REQUIRED:
        raise ValidationError(
            f"Orders required for discount must be at least {MIN_ORDERS_REQUIRED}",
            detail={"orders_required_for_discount": orders_required_for_discount},
        )
    rate = parse_rate(discount_rate) if discount_rate is not None else None

    settings = await get_settings(session)
    if rate is not None:
        settings.discount_rate = rate
    if orders_required_for_discount is not None:
        settings.orders_required_for_discount = orders_required_for_discount
    if auto_create_discount is not None:
        settings.auto_create_discount = auto_create_discount
    settings.updated_at = datetime.utcnow()

    session.add(settings)
    await session.commit()
    await session.refresh(settings)

    logger.info(
        "Bonus settings updated",
        extra={
            "discount_rate": str(settings.discount_rate),
            "orders_required_for_discount": settings.orders_required_for_discount,
            "auto_create_discount": settings.auto_create_discount,
        },
    )
    return settings


def settings_to_dict(settings: BonusSettings) -> dict:
    return {
        "discount_rate": float(settings.discount_rate),
        "orders_required_for_discount": settings.orders_required_for_discount,
        "auto_create_discount": settings.auto_create_discount,
        "updated_at": settings.updated_at.isoformat() if settings.updated_at else None,
    }
