"""
Eligibility calculator: which part of a purchase earns a bonus.

A purchase's eligible amount is the sum of its eligible line subtotals. It is
always re-derived from the current line flags and never stored on the purchase.
"""

import logging
from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from exceptions import ResourceNotFoundError
from models.customers import Purchase, PurchaseLine

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_money(value) -> Decimal:
    """Round to cents, half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def line_amount(line: PurchaseLine) -> Decimal:
    """Line subtotal incl. tax; legacy lines without one fall back to unit price x quantity."""
    if line.subtotal is not None:
        return Decimal(line.subtotal)
    return Decimal(line.price_unit or 0) * (line.quantity or 1)


def eligible_amount(lines: Iterable[PurchaseLine]) -> Decimal:
    total = ZERO
    for line in lines:
        if line.discount_eligible:
            total += line_amount(line)
    return to_money(total)


def bonus_for(amount: Decimal, rate: Decimal) -> Decimal:
    """Bonus earned on an eligible amount at a percentage rate."""
    return to_money(Decimal(amount) * Decimal(rate) / Decimal(100))


async def load_purchase_lines(
    session: AsyncSession, purchase_ids: Iterable[int]
) -> Dict[int, List[PurchaseLine]]:
    ids = list(set(purchase_ids))
    lines_by_purchase: Dict[int, List[PurchaseLine]] = defaultdict(list)
    if not ids:
        return lines_by_purchase
    result = await session.exec(
        select(PurchaseLine)
        .where(PurchaseLine.purchase_id.in_(ids))
        .order_by(PurchaseLine.id)
    )
    for line in result.all():
        lines_by_purchase[line.purchase_id].append(line)
    return lines_by_purchase


async def load_eligible_amounts(
    session: AsyncSession, purchase_ids: Iterable[int]
) -> Dict[int, Decimal]:
    """Eligible amount per purchase id; purchases without lines count as zero."""
    ids = list(set(purchase_ids))
    lines_by_purchase = await load_purchase_lines(session, ids)
    return {pid: eligible_amount(lines_by_purchase.get(pid, [])) for pid in ids}


async def set_line_eligibility(
    session: AsyncSession,
    purchase_id: int,
    line_id: int,
    discount_eligible: bool,
) -> PurchaseLine:
    """
    Flip a line's bonus eligibility and re-derive the cached totals of the
    active group holding its purchase. Redeemed groups stay frozen.
    """
    from services.groups import refresh_totals_for_purchase
    from services.locks import customer_lock

    purchase = await session.get(Purchase, purchase_id)
    if not purchase:
        raise ResourceNotFoundError("Purchase not found", detail={"purchase_id": purchase_id})

    async with customer_lock(purchase.customer_id):
        line = await session.get(PurchaseLine, line_id)
        if not line or line.purchase_id != purchase_id:
            raise ResourceNotFoundError(
                "Purchase line not found",
                detail={"purchase_id": purchase_id, "line_id": line_id},
            )

        line.discount_eligible = discount_eligible
        session.add(line)
        await session.flush()
        await refresh_totals_for_purchase(session, purchase_id)
        await session.commit()
        await session.refresh(line)

    logger.info(
        "Line eligibility changed",
        extra={"purchase_id": purchase_id, "line_id": line_id, "discount_eligible": discount_eligible},
    )
    return line
