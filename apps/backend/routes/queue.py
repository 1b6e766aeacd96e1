"""Queue routes: auto-promotion status, manual processing and the sweep trigger."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from database import get_session
from dependencies import get_draft_autosaver
from services.draft_autosave import DraftAutosaver
from services.groups import group_bundles, group_to_response
from services.queue import process_queue, queue_status, sweep_auto_bonus
from services.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])


@router.post("/sweep")
async def post_sweep(
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    """Scheduler hook: auto-create groups for every ready customer."""
    groups = await sweep_auto_bonus(session, autosaver)
    return {
        "created": len(groups),
        "groups": [{"id": g.id, "customer_id": g.customer_id} for g in groups],
    }


@router.get("/{customer_id}")
async def get_queue(customer_id: int, session: AsyncSession = Depends(get_session)):
    return await queue_status(session, customer_id)


@router.post("/{customer_id}/process", status_code=201)
async def post_process_queue(
    customer_id: int,
    session: AsyncSession = Depends(get_session),
    autosaver: Optional[DraftAutosaver] = Depends(get_draft_autosaver),
):
    group = await process_queue(session, customer_id, autosaver)
    settings = await get_settings(session)
    bundles = (await group_bundles(session, [group.id]))[group.id]
    return group_to_response(group, bundles, settings.orders_required_for_discount)
