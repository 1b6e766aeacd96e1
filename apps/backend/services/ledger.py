"""
Redemption Ledger: the only code path that marks a bonus group as paid out.

Redemption is a single conditional UPDATE guarded on status and on the
bundle count at redemption time, so two concurrent redeem calls (even in
different processes) cannot both succeed.
"""

import logging
from datetime import datetime

from sqlalchemy import func, select as sa_select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from exceptions import ConflictError, DatabaseError, ResourceNotFoundError, ValidationError
from models.bonus import BonusBundle, BonusGroup, GROUP_STATUS_ACTIVE, GROUP_STATUS_REDEEMED
from observability.metrics import bonus_events_total, bonus_redeemed_amount_total
from services.locks import customer_lock
from services.settings import get_settings

logger = logging.getLogger(__name__)


def _bundle_count_subquery(group_id: int):
    return (
        sa_select(func.count(BonusBundle.id))
        .where(BonusBundle.group_id == group_id)
        .scalar_subquery()
    )


async def redeem_group(session: AsyncSession, customer_id: int, group_id: int) -> BonusGroup:
    """
    Move an active group that meets the threshold to redeemed.

    Raises:
        ResourceNotFoundError: unknown group or other customer's group
        ConflictError: group already redeemed
        ValidationError: fewer bundles than orders_required_for_discount
    """
    async with customer_lock(customer_id):
        settings = await get_settings(session)
        required = settings.orders_required_for_discount
        now = datetime.utcnow()

        stmt = (
            update(BonusGroup)
            .where(
                BonusGroup.id == group_id,
                BonusGroup.customer_id == customer_id,
                BonusGroup.status == GROUP_STATUS_ACTIVE,
                _bundle_count_subquery(group_id) >= required,
            )
            .values(status=GROUP_STATUS_REDEEMED, redeemed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await session.execute(stmt)
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Failed to redeem bonus group", detail={"group_id": group_id}) from e

        if result.rowcount != 1:
            await session.rollback()
            await _raise_redeem_failure(session, customer_id, group_id, required)

        await session.commit()
        group = await session.get(BonusGroup, group_id)
        await session.refresh(group)

    bonus_events_total.labels(event_type="group_redeemed").inc()
    bonus_redeemed_amount_total.inc(float(group.total_discount))
    logger.info(
        "Bonus group redeemed",
        extra={"customer_id": customer_id, "group_id": group_id, "total_discount": str(group.total_discount)},
    )
    return group


async def _raise_redeem_failure(session: AsyncSession, customer_id: int, group_id: int, required: int) -> None:
    """Explain why the guarded UPDATE matched nothing."""
    group = await session.get(BonusGroup, group_id)
    if group is None or group.customer_id != customer_id:
        raise ResourceNotFoundError(
            "Bonus group not found",
            detail={"customer_id": customer_id, "group_id": group_id},
        )
    await session.refresh(group)
    if group.status == GROUP_STATUS_REDEEMED:
        raise ConflictError(
            "Bonus group has already been redeemed",
            detail={"group_id": group_id, "redeemed_at": group.redeemed_at.isoformat() if group.redeemed_at else None},
        )
    count = (
        await session.execute(sa_select(func.count(BonusBundle.id)).where(BonusBundle.group_id == group_id))
    ).scalar_one()
    raise ValidationError(
        f"Bonus group needs {required} purchases or bundles before it can be redeemed ({count} present)",
        detail={"group_id": group_id, "unique_bundle_count": count, "required": required},
    )
