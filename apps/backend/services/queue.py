"""
Queue / Auto-Promotion Tracker.

A customer's queue is the bonus-eligible purchases not yet in any group,
oldest first. Once it reaches orders_required_for_discount and auto-creation
is enabled, the queue is ready and an external trigger (ingestion hook or
the periodic sweep) may turn the oldest queued purchases into a group.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from exceptions import BonusEngineError, ValidationError
from models.bonus import BonusGroup
from models.customers import Customer, Purchase
from models.settings import BonusSettings
from services.customers import require_customer
from services.drafts import _prune_draft_locked
from services.eligibility import load_eligible_amounts
from services.groups import _create_group_locked, grouped_purchase_ids
from services.locks import customer_lock
from services.settings import get_settings

logger = logging.getLogger(__name__)

QUEUE_PENDING = "pending"
QUEUE_READY = "ready"
QUEUE_PROCESSED = "processed"


async def queued_purchases(session: AsyncSession, customer_id: int) -> List[Tuple[Purchase, Decimal]]:
    """Unassigned purchases with a positive eligible amount, oldest first."""
    result = await session.exec(
        select(Purchase)
        .where(Purchase.customer_id == customer_id)
        .order_by(Purchase.purchased_at, Purchase.id)
    )
    purchases = list(result.all())
    claimed = await grouped_purchase_ids(session, customer_id)
    unassigned = [p for p in purchases if p.id not in claimed]
    amounts = await load_eligible_amounts(session, [p.id for p in unassigned])
    return [(p, amounts[p.id]) for p in unassigned if amounts[p.id] > 0]


def queue_state(count: int, required: int) -> str:
    if count == 0:
        return QUEUE_PROCESSED
    return QUEUE_READY if count >= required else QUEUE_PENDING


async def queue_status(
    session: AsyncSession,
    customer_id: int,
    settings: Optional[BonusSettings] = None,
) -> dict:
    await require_customer(session, customer_id)
    settings = settings or await get_settings(session)
    required = settings.orders_required_for_discount
    queued = await queued_purchases(session, customer_id)
    count = len(queued)
    return {
        "customer_id": customer_id,
        "order_count": count,
        "purchase_ids": [p.id for p, _ in queued],
        "queued_amount": float(sum((amount for _, amount in queued), Decimal("0"))),
        "status": queue_state(count, required),
        "orders_required_for_discount": required,
        "auto_create_discount": settings.auto_create_discount,
        "ready_for_discount": settings.auto_create_discount and count >= required,
    }


async def _process_queue_locked(session: AsyncSession, customer_id: int, autosaver=None) -> BonusGroup:
    await require_customer(session, customer_id)
    settings = await get_settings(session)
    required = settings.orders_required_for_discount
    queued = await queued_purchases(session, customer_id)
    if len(queued) < required:
        raise ValidationError(
            f"Not enough queued purchases: {len(queued)} of {required}",
            detail={"order_count": len(queued), "required": required},
        )

    picked = [p.id for p, _ in queued[:required]]
    group = await _create_group_locked(
        session, customer_id, [[pid] for pid in picked], auto_created=True
    )
    await _prune_draft_locked(session, customer_id, picked, autosaver)
    return group


async def process_queue(session: AsyncSession, customer_id: int, autosaver=None) -> BonusGroup:
    """Create an auto group from the oldest queued purchases, one bundle each."""
    async with customer_lock(customer_id):
        return await _process_queue_locked(session, customer_id, autosaver)


async def auto_promote(session: AsyncSession, customer_id: int, autosaver=None) -> Optional[BonusGroup]:
    """Process the queue only when it is ready; otherwise do nothing."""
    async with customer_lock(customer_id):
        status = await queue_status(session, customer_id)
        if not status["ready_for_discount"]:
            return None
        return await _process_queue_locked(session, customer_id, autosaver)


async def sweep_auto_bonus(session: AsyncSession, autosaver=None) -> List[BonusGroup]:
    """Scheduler entry point: promote every ready customer, repeatedly while ready."""
    settings = await get_settings(session)
    if not settings.auto_create_discount:
        return []

    customer_ids = list((await session.exec(select(Customer.id).order_by(Customer.id))).all())
    created: List[BonusGroup] = []
    failed = 0
    for customer_id in customer_ids:
        try:
            while True:
                group = await auto_promote(session, customer_id, autosaver)
                if group is None:
                    break
                created.append(group)
        except BonusEngineError as e:
            failed += 1
            logger.warning(
                "Auto bonus failed for customer",
                extra={"customer_id": customer_id, "error": e.message},
            )

    if failed:
        # a failed customer's rollback expired the groups created before it
        for group in created:
            await session.refresh(group)

    logger.info(
        "Auto bonus sweep finished",
        extra={"customers": len(customer_ids), "groups_created": len(created), "customers_failed": failed},
    )
    return created
