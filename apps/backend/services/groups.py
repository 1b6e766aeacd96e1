"""
Group Lifecycle Manager: turns bundles into persisted bonus groups.

Handles:
- Creating groups from ordered bundles (bundle_index 0..k-1)
- Replacing membership of active groups (edit)
- Deleting active groups, releasing their purchases
- Re-deriving cached totals when line eligibility changes

Status is derived for active groups (pending vs redeemable) from the number
of bundles; only services.ledger moves a group to redeemed.
"""

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from exceptions import ConflictError, DatabaseError, ResourceNotFoundError, ValidationError
from models.bonus import (
    BonusBundle,
    BonusGroup,
    BonusGroupPurchase,
    GROUP_STATUS_ACTIVE,
    GROUP_STATUS_REDEEMED,
)
from models.customers import Purchase
from observability.metrics import bonus_events_total
from services.customers import require_customer
from services.eligibility import ZERO, bonus_for, load_eligible_amounts, to_money
from services.locks import customer_lock
from services.settings import get_settings, parse_rate

logger = logging.getLogger(__name__)

GroupBundles = List[Tuple[int, List[int]]]

MIN_GROUP_PURCHASES = 2


def bundles_from_order_ids(order_ids: Sequence[Union[int, Mapping[str, Any]]]) -> List[List[int]]:
    """
    Normalize a request body into ordered bundles.

    Accepts plain purchase ids (each its own bundle) or entries carrying
    purchase_id and bundle_index; entries sharing an index form one bundle.
    Bundles come out ordered by bundle_index, plain ids after indexed ones.
    """
    indexed: Dict[int, List[int]] = defaultdict(list)
    singles: List[List[int]] = []
    for entry in order_ids:
        if isinstance(entry, Mapping):
            indexed[int(entry.get("bundle_index", 0))].append(int(entry["purchase_id"]))
        else:
            singles.append([int(entry)])
    return [indexed[index] for index in sorted(indexed)] + singles


def unique_bundle_count(bundles: GroupBundles) -> int:
    return len({index for index, _ in bundles})


def group_state(group: BonusGroup, bundle_count: int, required: int) -> str:
    if group.status == GROUP_STATUS_REDEEMED:
        return "redeemed"
    return "redeemable" if bundle_count >= required else "pending"


def _validate_shape(bundles: Sequence[Sequence[int]]) -> List[int]:
    if any(len(ids) == 0 for ids in bundles):
        raise ValidationError("A bundle needs at least one purchase")
    flat = [pid for ids in bundles for pid in ids]
    if len(flat) < MIN_GROUP_PURCHASES:
        raise ValidationError(
            f"A bonus group needs at least {MIN_GROUP_PURCHASES} purchases",
            detail={"purchase_count": len(flat)},
        )
    seen, dupes = set(), set()
    for pid in flat:
        if pid in seen:
            dupes.add(pid)
        seen.add(pid)
    if dupes:
        raise ValidationError("Purchase listed more than once", detail={"purchase_ids": sorted(dupes)})
    return flat


async def _check_purchases(session: AsyncSession, customer_id: int, purchase_ids: List[int]) -> None:
    result = await session.exec(select(Purchase).where(Purchase.id.in_(purchase_ids)))
    found = {p.id: p for p in result.all()}
    missing = sorted(set(purchase_ids) - set(found))
    if missing:
        raise ValidationError("Unknown purchases", detail={"purchase_ids": missing})
    foreign = sorted(pid for pid, p in found.items() if p.customer_id != customer_id)
    if foreign:
        raise ValidationError("Purchases belong to another customer", detail={"purchase_ids": foreign})


async def grouped_purchase_ids(
    session: AsyncSession,
    customer_id: int,
    exclude_group_id: Optional[int] = None,
) -> Dict[int, int]:
    """purchase_id -> group_id for every purchase held by one of the customer's groups."""
    stmt = (
        select(BonusGroupPurchase.purchase_id, BonusGroupPurchase.group_id)
        .join(BonusGroup, BonusGroup.id == BonusGroupPurchase.group_id)
        .where(BonusGroup.customer_id == customer_id)
    )
    if exclude_group_id is not None:
        stmt = stmt.where(BonusGroupPurchase.group_id != exclude_group_id)
    result = await session.exec(stmt)
    return {purchase_id: group_id for purchase_id, group_id in result.all()}


async def _ensure_unclaimed(
    session: AsyncSession,
    customer_id: int,
    purchase_ids: List[int],
    exclude_group_id: Optional[int] = None,
) -> None:
    claimed = await grouped_purchase_ids(session, customer_id, exclude_group_id)
    taken = sorted(set(purchase_ids) & set(claimed))
    if taken:
        raise ValidationError(
            "Purchases are already in a bonus group",
            detail={"purchase_ids": taken, "group_ids": sorted({claimed[pid] for pid in taken})},
        )


async def _write_membership(
    session: AsyncSession,
    group: BonusGroup,
    bundles: Sequence[Sequence[int]],
    rate: Decimal,
) -> None:
    """Insert bundle and membership rows and set the cached totals on the group."""
    amounts = await load_eligible_amounts(session, [pid for ids in bundles for pid in ids])
    total_amount = ZERO
    for index, ids in enumerate(bundles):
        bundle = BonusBundle(group_id=group.id, bundle_index=index)
        session.add(bundle)
        await session.flush()

        for pid in ids:
            amount = amounts[pid]
            total_amount += amount
            session.add(
                BonusGroupPurchase(
                    group_id=group.id,
                    bundle_id=bundle.id,
                    purchase_id=pid,
                    eligible_amount=amount,
                    discount_amount=bonus_for(amount, rate),
                )
            )

    # rounded once over the whole group, not per bundle
    group.total_amount = to_money(total_amount)
    group.total_discount = bonus_for(total_amount, rate)
    session.add(group)
    await session.flush()


async def _clear_membership(session: AsyncSession, group_id: int) -> List[int]:
    result = await session.exec(
        select(BonusGroupPurchase.purchase_id).where(BonusGroupPurchase.group_id == group_id)
    )
    released = sorted(result.all())
    await session.execute(delete(BonusGroupPurchase).where(BonusGroupPurchase.group_id == group_id))
    await session.execute(delete(BonusBundle).where(BonusBundle.group_id == group_id))
    return released


async def get_group(
    session: AsyncSession,
    customer_id: int,
    group_id: int,
    for_update: bool = False,
) -> BonusGroup:
    stmt = select(BonusGroup).where(BonusGroup.id == group_id)
    if for_update:
        stmt = stmt.with_for_update()
    group = (await session.exec(stmt)).first()
    if not group or group.customer_id != customer_id:
        raise ResourceNotFoundError(
            "Bonus group not found",
            detail={"customer_id": customer_id, "group_id": group_id},
        )
    return group


async def list_groups(session: AsyncSession, customer_id: int) -> List[BonusGroup]:
    result = await session.exec(
        select(BonusGroup)
        .where(BonusGroup.customer_id == customer_id)
        .order_by(BonusGroup.created_at.desc(), BonusGroup.id.desc())
    )
    return list(result.all())


async def group_bundles(session: AsyncSession, group_ids: Iterable[int]) -> Dict[int, GroupBundles]:
    """group_id -> [(bundle_index, [purchase_ids])] in bundle_index order."""
    ids = list(set(group_ids))
    bundles: Dict[int, GroupBundles] = {gid: [] for gid in ids}
    if not ids:
        return bundles
    result = await session.exec(
        select(BonusBundle.group_id, BonusBundle.bundle_index, BonusGroupPurchase.purchase_id)
        .join(BonusGroupPurchase, BonusGroupPurchase.bundle_id == BonusBundle.id)
        .where(BonusBundle.group_id.in_(ids))
        .order_by(BonusBundle.group_id, BonusBundle.bundle_index, BonusGroupPurchase.id)
    )
    for group_id, bundle_index, purchase_id in result.all():
        group_list = bundles[group_id]
        if group_list and group_list[-1][0] == bundle_index:
            group_list[-1][1].append(purchase_id)
        else:
            group_list.append((bundle_index, [purchase_id]))
    return bundles


async def _commit_or_conflict(session: AsyncSession, customer_id: int) -> None:
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning("Concurrent purchase claim rejected", extra={"customer_id": customer_id})
        raise ConflictError("Purchases were claimed by another bonus group, please retry") from e
    except SQLAlchemyError as e:
        await session.rollback()
        raise DatabaseError("Failed to save bonus group", detail={"customer_id": customer_id}) from e


async def _create_group_locked(
    session: AsyncSession,
    customer_id: int,
    bundles: Sequence[Sequence[int]],
    discount_rate: Optional[Any] = None,
    auto_created: bool = False,
) -> BonusGroup:
    await require_customer(session, customer_id)
    flat = _validate_shape(bundles)
    await _check_purchases(session, customer_id, flat)
    await _ensure_unclaimed(session, customer_id, flat)

    settings = await get_settings(session)
    rate = parse_rate(discount_rate) if discount_rate is not None else Decimal(settings.discount_rate)

    group = BonusGroup(
        customer_id=customer_id,
        discount_rate=rate,
        status=GROUP_STATUS_ACTIVE,
        auto_created=auto_created,
    )
    try:
        session.add(group)
        await session.flush()
        await _write_membership(session, group, bundles, rate)
    except IntegrityError as e:
        await session.rollback()
        raise ConflictError("Purchases were claimed by another bonus group, please retry") from e
    await _commit_or_conflict(session, customer_id)
    await session.refresh(group)

    bonus_events_total.labels(event_type="group_auto_created" if auto_created else "group_created").inc()
    logger.info(
        "Bonus group created",
        extra={
            "customer_id": customer_id,
            "group_id": group.id,
            "bundle_count": len(bundles),
            "purchase_count": len(flat),
            "total_discount": str(group.total_discount),
            "auto_created": auto_created,
        },
    )
    return group


async def create_group(
    session: AsyncSession,
    customer_id: int,
    bundles: Sequence[Sequence[int]],
    discount_rate: Optional[Any] = None,
    auto_created: bool = False,
) -> BonusGroup:
    """
    Persist a new active group from ordered bundles.

    Raises:
        ResourceNotFoundError: unknown customer
        ValidationError: empty bundle, fewer than two purchases, duplicates,
            foreign or already grouped purchases, bad rate
        ConflictError: a purchase was claimed concurrently
    """
    async with customer_lock(customer_id):
        return await _create_group_locked(session, customer_id, bundles, discount_rate, auto_created)


async def _update_group_locked(
    session: AsyncSession,
    customer_id: int,
    group_id: int,
    bundles: Sequence[Sequence[int]],
    discount_rate: Optional[Any] = None,
) -> BonusGroup:
    group = await get_group(session, customer_id, group_id, for_update=True)
    if group.status == GROUP_STATUS_REDEEMED:
        raise ConflictError("Redeemed bonus groups cannot be edited", detail={"group_id": group_id})

    flat = _validate_shape(bundles)
    await _check_purchases(session, customer_id, flat)
    await _ensure_unclaimed(session, customer_id, flat, exclude_group_id=group_id)

    settings = await get_settings(session)
    rate = parse_rate(discount_rate) if discount_rate is not None else Decimal(settings.discount_rate)

    try:
        await _clear_membership(session, group_id)
        await session.flush()
        group.discount_rate = rate
        group.updated_at = datetime.utcnow()
        await _write_membership(session, group, bundles, rate)
    except IntegrityError as e:
        await session.rollback()
        raise ConflictError("Purchases were claimed by another bonus group, please retry") from e
    await _commit_or_conflict(session, customer_id)
    await session.refresh(group)

    bonus_events_total.labels(event_type="group_updated").inc()
    logger.info(
        "Bonus group updated",
        extra={"customer_id": customer_id, "group_id": group_id, "bundle_count": len(bundles)},
    )
    return group


async def update_group(
    session: AsyncSession,
    customer_id: int,
    group_id: int,
    bundles: Sequence[Sequence[int]],
    discount_rate: Optional[Any] = None,
) -> BonusGroup:
    """Replace an active group's membership wholesale and recompute its totals."""
    async with customer_lock(customer_id):
        return await _update_group_locked(session, customer_id, group_id, bundles, discount_rate)


async def delete_group(session: AsyncSession, customer_id: int, group_id: int) -> List[int]:
    """Delete an active group. Returns the released purchase ids."""
    async with customer_lock(customer_id):
        group = await get_group(session, customer_id, group_id, for_update=True)
        if group.status == GROUP_STATUS_REDEEMED:
            raise ConflictError("Redeemed bonus groups cannot be deleted", detail={"group_id": group_id})

        released = await _clear_membership(session, group_id)
        await session.delete(group)
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Failed to delete bonus group", detail={"group_id": group_id}) from e

    bonus_events_total.labels(event_type="group_deleted").inc()
    logger.info(
        "Bonus group deleted",
        extra={"customer_id": customer_id, "group_id": group_id, "released_purchase_ids": released},
    )
    return released


async def refresh_totals_for_purchase(session: AsyncSession, purchase_id: int) -> Optional[BonusGroup]:
    """
    Re-derive the cached amounts of the active group holding a purchase.
    Flushes only; the caller commits.
    """
    membership = (
        await session.exec(select(BonusGroupPurchase).where(BonusGroupPurchase.purchase_id == purchase_id))
    ).first()
    if membership is None:
        return None
    group = await session.get(BonusGroup, membership.group_id)
    if group is None or group.status != GROUP_STATUS_ACTIVE:
        return None

    members = list(
        (await session.exec(select(BonusGroupPurchase).where(BonusGroupPurchase.group_id == group.id))).all()
    )
    amounts = await load_eligible_amounts(session, [m.purchase_id for m in members])
    rate = Decimal(group.discount_rate)

    total_amount = ZERO
    for member in members:
        member.eligible_amount = amounts[member.purchase_id]
        member.discount_amount = bonus_for(member.eligible_amount, rate)
        total_amount += member.eligible_amount
        session.add(member)

    group.total_amount = to_money(total_amount)
    group.total_discount = bonus_for(total_amount, rate)
    group.updated_at = datetime.utcnow()
    session.add(group)
    await session.flush()
    return group


def group_to_response(group: BonusGroup, bundles: GroupBundles, required: int) -> dict:
    count = unique_bundle_count(bundles)
    state = group_state(group, count, required)
    return {
        "id": group.id,
        "customer_id": group.customer_id,
        "status": group.status,
        "state": state,
        "is_redeemable": state == "redeemable",
        "is_pending": state == "pending",
        "unique_bundle_count": count,
        "orders_required_for_discount": required,
        "discount_rate": float(group.discount_rate),
        "total_amount": float(group.total_amount),
        "total_discount": float(group.total_discount),
        "auto_created": group.auto_created,
        "bundles": [
            {"bundle_index": index, "purchase_ids": ids, "is_bundle": len(ids) > 1}
            for index, ids in bundles
        ],
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "updated_at": group.updated_at.isoformat() if group.updated_at else None,
        "redeemed_at": group.redeemed_at.isoformat() if group.redeemed_at else None,
    }
