"""Draft routes: assemble bundles and selections, edit groups, commit."""

import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel.ext.asyncio.session import AsyncSession

from database import get_session
from dependencies import get_draft_autosaver
from services.bundles import DraftState, draft_to_dict
from services.draft_autosave import DraftAutosaver
from services.drafts import (
    add_draft_bundle,
    cancel_group_edit,
    clear_draft,
    commit_draft,
    deselect_draft_purchase,
    remove_draft_bundle,
    remove_draft_purchase,
    replace_draft,
    select_draft_purchase,
    start_group_edit,
)
from services.groups import group_bundles, group_to_response
from services.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/discount/{customer_id}/draft", tags=["drafts"])


class DraftBundleIn(BaseModel):
    purchase_ids: List[int]


class DraftReplaceRequest(BaseModel):
    bundles: List[DraftBundleIn] = Field(default_factory=list)
    selected_purchase_ids: List[int] = Field(default_factory=list)


class DraftCommitRequest(BaseModel):
    bundle_indices: List[int] = Field(default_factory=list)
    purchase_ids: List[int] = Field(default_factory=list)
    discount_rate: Optional[Decimal] = None


def _draft_response(customer_id: int, draft: DraftState) -> dict:
    return {"customer_id": customer_id, **draft_to_dict(draft)}


@router.put("")
async def put_draft(
    customer_id: int,
    body: DraftReplaceRequest,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    """Overwrite the whole draft (idempotent)."""
    draft = await replace_draft(
        session,
        customer_id,
        [b.purchase_ids for b in body.bundles],
        body.selected_purchase_ids,
        autosaver,
    )
    return _draft_response(customer_id, draft)


@router.delete("")
async def delete_draft(
    customer_id: int,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    draft = await clear_draft(session, customer_id, autosaver)
    return _draft_response(customer_id, draft)


@router.post("/bundles", status_code=201)
async def post_draft_bundle(
    customer_id: int,
    body: DraftBundleIn,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    draft = await add_draft_bundle(session, customer_id, body.purchase_ids, autosaver)
    return _draft_response(customer_id, draft)


@router.delete("/bundles/{bundle_index}")
async def delete_draft_bundle(
    customer_id: int,
    bundle_index: int,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    draft = await remove_draft_bundle(session, customer_id, bundle_index, autosaver)
    return _draft_response(customer_id, draft)


@router.delete("/bundles/{bundle_index}/purchases/{purchase_id}")
async def delete_draft_bundle_purchase(
    customer_id: int,
    bundle_index: int,
    purchase_id: int,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    draft = await remove_draft_purchase(session, customer_id, bundle_index, purchase_id, autosaver)
    return _draft_response(customer_id, draft)


@router.post("/selection/{purchase_id}")
async def post_draft_selection(
    customer_id: int,
    purchase_id: int,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    draft = await select_draft_purchase(session, customer_id, purchase_id, autosaver)
    return _draft_response(customer_id, draft)


@router.delete("/selection/{purchase_id}")
async def delete_draft_selection(
    customer_id: int,
    purchase_id: int,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    draft = await deselect_draft_purchase(session, customer_id, purchase_id, autosaver)
    return _draft_response(customer_id, draft)


@router.post("/edit/cancel")
async def post_cancel_edit(
    customer_id: int,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    draft = await cancel_group_edit(session, customer_id, autosaver)
    return _draft_response(customer_id, draft)


@router.post("/edit/{group_id}")
async def post_start_edit(
    customer_id: int,
    group_id: int,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    draft = await start_group_edit(session, customer_id, group_id, autosaver)
    return _draft_response(customer_id, draft)


@router.post("/commit", status_code=201)
async def post_commit_draft(
    customer_id: int,
    body: DraftCommitRequest,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    """Create (or, while editing, update) a group from exactly N selected units."""
    group = await commit_draft(
        session,
        customer_id,
        body.bundle_indices,
        body.purchase_ids,
        body.discount_rate,
        autosaver,
    )
    settings = await get_settings(session)
    bundles = (await group_bundles(session, [group.id]))[group.id]
    return group_to_response(group, bundles, settings.orders_required_for_discount)
