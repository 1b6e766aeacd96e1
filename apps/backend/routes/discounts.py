"""Bonus group routes: customer overview and group create/update/redeem/delete."""

import logging
from decimal import Decimal
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel.ext.asyncio.session import AsyncSession

from database import get_session
from dependencies import get_draft_autosaver
from models.bonus import BonusGroup
from services.customers import customer_to_dict, search_customers
from services.draft_autosave import DraftAutosaver
from services.drafts import prune_draft
from services.groups import (
    bundles_from_order_ids,
    create_group,
    delete_group,
    group_bundles,
    group_to_response,
    list_groups,
    unique_bundle_count,
    update_group,
)
from services.ledger import redeem_group
from services.settings import get_settings
from services.summary import customer_overview, summarize_bonus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/discount", tags=["discount"])


# ── Request Models ───────────────────────────────────────────────────────────


class GroupEntry(BaseModel):
    purchase_id: int
    bundle_index: int = 0


class GroupRequest(BaseModel):
    order_ids: List[Union[int, GroupEntry]] = Field(default_factory=list)
    discount_rate: Optional[Decimal] = None

    def bundles(self) -> List[List[int]]:
        return bundles_from_order_ids(
            [e.model_dump() if isinstance(e, GroupEntry) else e for e in self.order_ids]
        )


async def _group_response(session: AsyncSession, group: BonusGroup) -> dict:
    settings = await get_settings(session)
    bundles = (await group_bundles(session, [group.id]))[group.id]
    return group_to_response(group, bundles, settings.orders_required_for_discount)


# ── Routes ───────────────────────────────────────────────────────────────────


@router.get("")
async def list_discount_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    """Customers that have bonus groups, with their bonus totals, paginated."""
    customers, total = await search_customers(
        session, page=page, limit=limit, search=search, with_groups=True
    )
    settings = await get_settings(session)
    required = settings.orders_required_for_discount

    items = []
    for customer in customers:
        groups = await list_groups(session, customer.id)
        bundles = await group_bundles(session, [g.id for g in groups])
        stats = summarize_bonus(
            [(g, unique_bundle_count(bundles[g.id])) for g in groups],
            [],
            Decimal(settings.discount_rate),
            required,
        )
        stats.pop("projected_bonus")
        stats.pop("unassigned_eligible_amount")
        items.append({**customer_to_dict(customer), "group_count": len(groups), **stats})

    return {
        "items": items,
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }


@router.get("/{customer_id}")
async def get_customer_discounts(
    customer_id: int,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    return await customer_overview(session, customer_id, autosaver)


@router.post("/{customer_id}/groups", status_code=201)
async def create_discount_group(
    customer_id: int,
    body: GroupRequest,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    bundles = body.bundles()
    group = await create_group(session, customer_id, bundles, body.discount_rate)
    await prune_draft(session, customer_id, [pid for ids in bundles for pid in ids], autosaver)
    return await _group_response(session, group)


@router.put("/{customer_id}/groups/{group_id}")
async def update_discount_group(
    customer_id: int,
    group_id: int,
    body: GroupRequest,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    bundles = body.bundles()
    group = await update_group(session, customer_id, group_id, bundles, body.discount_rate)
    await prune_draft(session, customer_id, [pid for ids in bundles for pid in ids], autosaver)
    return await _group_response(session, group)


@router.put("/{customer_id}/groups/{group_id}/redeem")
async def redeem_discount_group(
    customer_id: int,
    group_id: int,
    session: AsyncSession = Depends(get_session),
):
    group = await redeem_group(session, customer_id, group_id)
    return await _group_response(session, group)


@router.delete("/{customer_id}/groups/{group_id}")
async def delete_discount_group(
    customer_id: int,
    group_id: int,
    session: AsyncSession = Depends(get_session),
):
    released = await delete_group(session, customer_id, group_id)
    return {"status": "deleted", "group_id": group_id, "released_purchase_ids": released}
