"""
Customer bonus summary: the read-only aggregate over groups and purchases.

Ledgered amounts (redeemable, pending, redeemed) come from group totals.
The projected bonus on unassigned purchases is an estimate at the current
rate and is reported separately so it is never counted twice.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlmodel.ext.asyncio.session import AsyncSession

from models.bonus import BonusGroup
from models.customers import PurchaseLine
from services.bundles import draft_to_dict
from services.customers import customer_to_dict, list_purchases, require_customer
from services.drafts import load_draft
from services.eligibility import ZERO, bonus_for, eligible_amount, load_purchase_lines, to_money
from services.groups import group_bundles, group_state, group_to_response, list_groups, unique_bundle_count
from services.queue import queue_status
from services.settings import get_settings, settings_to_dict


def summarize_bonus(
    groups: Iterable[Tuple[BonusGroup, int]],
    unassigned_amounts: Iterable[Decimal],
    rate: Decimal,
    required: int,
) -> Dict[str, float]:
    """
    Args:
        groups: (group, unique_bundle_count) pairs
        unassigned_amounts: eligible amounts of purchases in no group
        rate: current settings rate, used only for the projection
        required: orders_required_for_discount
    """
    totals = {"redeemable": ZERO, "pending": ZERO, "redeemed": ZERO}
    counts = {"redeemable": 0, "pending": 0, "redeemed": 0}
    for group, bundle_count in groups:
        state = group_state(group, bundle_count, required)
        totals[state] += Decimal(group.total_discount)
        counts[state] += 1

    amounts: List[Decimal] = [Decimal(a) for a in unassigned_amounts]
    projected_base = sum(amounts, ZERO)
    return {
        "redeemable_bonus": float(to_money(totals["redeemable"])),
        "pending_bonus": float(to_money(totals["pending"])),
        "redeemed_bonus": float(to_money(totals["redeemed"])),
        "projected_bonus": float(bonus_for(projected_base, rate)),
        "unassigned_eligible_amount": float(to_money(projected_base)),
        "redeemable_group_count": counts["redeemable"],
        "pending_group_count": counts["pending"],
        "redeemed_group_count": counts["redeemed"],
    }


def purchase_totals(purchases: Iterable, item_counts: Dict[int, int]) -> Dict[str, float]:
    """order_count, item_count and total_order_value over a customer's purchases."""
    order_count = 0
    item_count = 0
    total_value = ZERO
    for purchase in purchases:
        order_count += 1
        item_count += item_counts.get(purchase.id, 0)
        total_value += Decimal(purchase.amount_total or 0)
    return {
        "order_count": order_count,
        "item_count": item_count,
        "total_order_value": float(to_money(total_value)),
    }


def _money(value) -> Optional[float]:
    return float(value) if value is not None else None


def _line_to_dict(line: PurchaseLine) -> dict:
    return {
        "id": line.id,
        "product_name": line.product_name,
        "quantity": line.quantity,
        "price_unit": _money(line.price_unit),
        "subtotal": _money(line.subtotal),
        "discount_eligible": line.discount_eligible,
    }


async def customer_overview(session: AsyncSession, customer_id: int, autosaver=None) -> dict:
    """Everything the bonus screen shows for one customer."""
    customer = await require_customer(session, customer_id)
    settings = await get_settings(session)
    required = settings.orders_required_for_discount

    purchases = await list_purchases(session, customer_id)
    lines = await load_purchase_lines(session, [p.id for p in purchases])
    groups = await list_groups(session, customer_id)
    bundles = await group_bundles(session, [g.id for g in groups])
    status_by_group = {g.id: g.status for g in groups}
    group_of = {pid: g_id for g_id, members in bundles.items() for _, ids in members for pid in ids}

    purchase_rows = []
    unassigned_amounts = []
    for purchase in purchases:
        purchase_lines = lines.get(purchase.id, [])
        amount = eligible_amount(purchase_lines)
        group_id = group_of.get(purchase.id)
        if group_id is None:
            unassigned_amounts.append(amount)
        purchase_rows.append({
            "id": purchase.id,
            "pos_reference": purchase.pos_reference,
            "purchased_at": purchase.purchased_at.isoformat() if purchase.purchased_at else None,
            "amount_total": _money(purchase.amount_total),
            "eligible_amount": float(amount),
            "group_id": group_id,
            "group_status": status_by_group.get(group_id),
            "lines": [_line_to_dict(line) for line in purchase_lines],
        })

    item_counts = {pid: sum(line.quantity or 0 for line in ls) for pid, ls in lines.items()}
    summary = summarize_bonus(
        [(g, unique_bundle_count(bundles[g.id])) for g in groups],
        unassigned_amounts,
        Decimal(settings.discount_rate),
        required,
    )
    summary.update(purchase_totals(purchases, item_counts))

    return {
        "customer": customer_to_dict(customer),
        "purchases": purchase_rows,
        "groups": [group_to_response(g, bundles[g.id], required) for g in groups],
        "queue": await queue_status(session, customer_id, settings),
        "settings": settings_to_dict(settings),
        "draft": draft_to_dict(await load_draft(session, customer_id, autosaver)),
        "summary": summary,
    }
