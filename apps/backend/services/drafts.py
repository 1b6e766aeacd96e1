"""
Draft service: loads, mutates and stores a customer's uncommitted bundles.

Mutations run under the customer lock, apply a pure operation from
services.bundles and hand the result to the DraftAutosaver. Reads prefer
a draft still waiting for its debounced save over the stored row.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Collection, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from exceptions import ConflictError, PersistenceError
from models.bonus import BonusDraft, BonusGroup, GROUP_STATUS_REDEEMED
from services import bundles as ops
from services.bundles import DraftBundle, DraftState
from services.customers import require_customer
from services.draft_autosave import DraftAutosaver
from services.groups import (
    _create_group_locked,
    _update_group_locked,
    get_group,
    group_bundles,
    grouped_purchase_ids,
)
from services.locks import customer_lock
from services.settings import get_settings

logger = logging.getLogger(__name__)


def draft_from_row(row: Optional[BonusDraft]) -> DraftState:
    if row is None:
        return DraftState()
    return DraftState(
        bundles=[DraftBundle(**b) for b in (row.bundles or [])],
        selected_purchase_ids=list(row.selected_purchase_ids or []),
        editing_group_id=row.editing_group_id,
        imported_indices=list(row.imported_indices or []),
        imported_purchase_ids=list(row.imported_purchase_ids or []),
    )


async def load_draft(
    session: AsyncSession,
    customer_id: int,
    autosaver: Optional[DraftAutosaver] = None,
) -> DraftState:
    if autosaver is not None:
        pending = autosaver.pending(customer_id)
        if pending is not None:
            return pending
    return draft_from_row(await session.get(BonusDraft, customer_id))


async def write_draft(session: AsyncSession, customer_id: int, draft: DraftState) -> BonusDraft:
    """Upsert the stored draft. Raises PersistenceError on database failure."""
    try:
        row = await session.get(BonusDraft, customer_id)
        if row is None:
            row = BonusDraft(customer_id=customer_id)
        row.bundles = [b.model_dump() for b in draft.bundles]
        row.selected_purchase_ids = list(draft.selected_purchase_ids)
        row.editing_group_id = draft.editing_group_id
        row.imported_indices = list(draft.imported_indices)
        row.imported_purchase_ids = list(draft.imported_purchase_ids)
        row.updated_at = datetime.utcnow()
        session.add(row)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError("Failed to save draft", detail={"customer_id": customer_id}) from e
    return row


async def _store(
    session: AsyncSession,
    customer_id: int,
    draft: DraftState,
    autosaver: Optional[DraftAutosaver],
) -> None:
    if autosaver is not None:
        autosaver.schedule(customer_id, draft)
    else:
        await write_draft(session, customer_id, draft)


async def _store_now(
    session: AsyncSession,
    customer_id: int,
    draft: DraftState,
    autosaver: Optional[DraftAutosaver],
) -> None:
    if autosaver is not None:
        await autosaver.save_now(session, customer_id, draft)
    else:
        await write_draft(session, customer_id, draft)


async def _unavailable(session: AsyncSession, customer_id: int, draft: DraftState) -> Collection[int]:
    """Purchases held by groups, except the one being edited."""
    return set(await grouped_purchase_ids(session, customer_id, exclude_group_id=draft.editing_group_id))


async def _apply(
    session: AsyncSession,
    customer_id: int,
    autosaver: Optional[DraftAutosaver],
    mutate: Callable[[DraftState, Collection[int]], DraftState],
) -> DraftState:
    async with customer_lock(customer_id):
        await require_customer(session, customer_id)
        draft = await load_draft(session, customer_id, autosaver)
        unavailable = await _unavailable(session, customer_id, draft)
        new_draft = mutate(draft, unavailable)
        await _store(session, customer_id, new_draft, autosaver)
        return new_draft


async def add_draft_bundle(session, customer_id: int, purchase_ids: Sequence[int], autosaver=None) -> DraftState:
    return await _apply(session, customer_id, autosaver, lambda d, u: ops.add_bundle(d, purchase_ids, u))


async def remove_draft_bundle(session, customer_id: int, bundle_index: int, autosaver=None) -> DraftState:
    return await _apply(session, customer_id, autosaver, lambda d, u: ops.remove_bundle(d, bundle_index))


async def remove_draft_purchase(
    session, customer_id: int, bundle_index: int, purchase_id: int, autosaver=None
) -> DraftState:
    return await _apply(
        session,
        customer_id,
        autosaver,
        lambda d, u: ops.remove_purchase_from_bundle(d, bundle_index, purchase_id),
    )


async def select_draft_purchase(session, customer_id: int, purchase_id: int, autosaver=None) -> DraftState:
    return await _apply(session, customer_id, autosaver, lambda d, u: ops.select_purchase(d, purchase_id, u))


async def deselect_draft_purchase(session, customer_id: int, purchase_id: int, autosaver=None) -> DraftState:
    return await _apply(session, customer_id, autosaver, lambda d, u: ops.deselect_purchase(d, purchase_id))


async def cancel_group_edit(session, customer_id: int, autosaver=None) -> DraftState:
    return await _apply(session, customer_id, autosaver, lambda d, u: ops.cancel_edit(d))


async def start_group_edit(
    session: AsyncSession,
    customer_id: int,
    group_id: int,
    autosaver: Optional[DraftAutosaver] = None,
) -> DraftState:
    """Import an active group's bundles into the draft, keeping their grouping."""
    async with customer_lock(customer_id):
        group = await get_group(session, customer_id, group_id)
        if group.status == GROUP_STATUS_REDEEMED:
            raise ConflictError("Redeemed bonus groups cannot be edited", detail={"group_id": group_id})
        membership = (await group_bundles(session, [group_id]))[group_id]
        draft = await load_draft(session, customer_id, autosaver)
        new_draft = ops.start_edit_group(draft, group_id, membership)
        await _store(session, customer_id, new_draft, autosaver)
        return new_draft


async def replace_draft(
    session: AsyncSession,
    customer_id: int,
    bundles: Sequence[Sequence[int]],
    selected_purchase_ids: Sequence[int] = (),
    autosaver: Optional[DraftAutosaver] = None,
) -> DraftState:
    """Idempotent overwrite of the whole draft, written synchronously."""
    async with customer_lock(customer_id):
        await require_customer(session, customer_id)
        unavailable = set(await grouped_purchase_ids(session, customer_id))
        draft = ops.build_draft(bundles, selected_purchase_ids, unavailable)
        await _store_now(session, customer_id, draft, autosaver)
        return draft


async def clear_draft(
    session: AsyncSession,
    customer_id: int,
    autosaver: Optional[DraftAutosaver] = None,
) -> DraftState:
    async with customer_lock(customer_id):
        await require_customer(session, customer_id)
        draft = DraftState()
        await _store_now(session, customer_id, draft, autosaver)
        logger.info("Draft cleared", extra={"customer_id": customer_id})
        return draft


async def _prune_draft_locked(
    session: AsyncSession,
    customer_id: int,
    purchase_ids: Collection[int],
    autosaver: Optional[DraftAutosaver] = None,
) -> DraftState:
    draft = await load_draft(session, customer_id, autosaver)
    if not set(purchase_ids) & draft.all_purchase_ids():
        return draft
    pruned = ops.prune_purchases(draft, purchase_ids)
    await _store(session, customer_id, pruned, autosaver)
    return pruned


async def prune_draft(
    session: AsyncSession,
    customer_id: int,
    purchase_ids: Collection[int],
    autosaver: Optional[DraftAutosaver] = None,
) -> DraftState:
    """Drop purchases that a group just claimed from the customer's draft."""
    async with customer_lock(customer_id):
        return await _prune_draft_locked(session, customer_id, purchase_ids, autosaver)


async def commit_draft(
    session: AsyncSession,
    customer_id: int,
    bundle_indices: Sequence[int],
    purchase_ids: Sequence[int],
    discount_rate: Optional[Any] = None,
    autosaver: Optional[DraftAutosaver] = None,
) -> BonusGroup:
    """
    Turn a manual selection into a group.

    The selection must be exactly orders_required_for_discount units. When
    the draft is editing a group, that group is updated instead of a new one
    being created. Committed bundles and selections leave the draft.
    """
    async with customer_lock(customer_id):
        await require_customer(session, customer_id)
        draft = await load_draft(session, customer_id, autosaver)
        settings = await get_settings(session)

        units = ops.selection_units(bundle_indices, purchase_ids)
        ops.validate_manual_selection(units, settings.orders_required_for_discount)
        commit_bundles = ops.build_commit_bundles(draft, bundle_indices, purchase_ids)

        if draft.editing_group_id is not None:
            group = await _update_group_locked(
                session, customer_id, draft.editing_group_id, commit_bundles, discount_rate
            )
        else:
            group = await _create_group_locked(session, customer_id, commit_bundles, discount_rate)

        remaining = ops.remove_committed(draft, bundle_indices, purchase_ids)
        await _store(session, customer_id, remaining, autosaver)

    logger.info(
        "Draft committed",
        extra={"customer_id": customer_id, "group_id": group.id, "units": units},
    )
    return group
