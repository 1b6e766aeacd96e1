"""Tests for the unassigned purchase queue and automatic group creation."""
from unittest.mock import patch

import pytest

from exceptions import DatabaseError, ResourceNotFoundError, ValidationError
from services.bundles import DraftBundle, DraftState
from services.drafts import load_draft, write_draft
from services.groups import _create_group_locked, create_group, group_bundles
from services.queue import (
    QUEUE_PENDING,
    QUEUE_PROCESSED,
    QUEUE_READY,
    auto_promote,
    process_queue,
    queue_state,
    queue_status,
    sweep_auto_bonus,
)
from services.settings import update_settings


def test_queue_state_transitions():
    assert queue_state(0, 3) == QUEUE_PROCESSED
    assert queue_state(2, 3) == QUEUE_PENDING
    assert queue_state(3, 3) == QUEUE_READY
    assert queue_state(5, 3) == QUEUE_READY


@pytest.mark.asyncio
async def test_queue_excludes_grouped_and_zero_eligible_purchases(session, make_customer, make_purchase):
    customer = await make_customer()
    p1, p2 = [await make_purchase(customer) for _ in range(2)]
    await create_group(session, customer.id, [[p1.id], [p2.id]])
    p3 = await make_purchase(customer, lines=[(40, True), (10, False)])
    await make_purchase(customer, lines=[(25, False)])

    status = await queue_status(session, customer.id)

    assert status["purchase_ids"] == [p3.id]
    assert status["order_count"] == 1
    assert status["queued_amount"] == 40.0
    assert status["status"] == QUEUE_PENDING
    assert status["ready_for_discount"] is False


@pytest.mark.asyncio
async def test_queue_status_unknown_customer(session):
    with pytest.raises(ResourceNotFoundError):
        await queue_status(session, 12345)


@pytest.mark.asyncio
async def test_process_queue_takes_oldest_purchases_as_single_bundles(session, make_customer, make_purchase):
    customer = await make_customer()
    purchases = [await make_purchase(customer) for _ in range(4)]

    group = await process_queue(session, customer.id)

    assert group.auto_created is True
    bundles = (await group_bundles(session, [group.id]))[group.id]
    assert bundles == [(i, [p.id]) for i, p in enumerate(purchases[:3])]

    status = await queue_status(session, customer.id)
    assert status["purchase_ids"] == [purchases[3].id]


@pytest.mark.asyncio
async def test_process_queue_needs_enough_purchases(session, make_customer, make_purchase):
    customer = await make_customer()
    await make_purchase(customer)
    await make_purchase(customer)

    with pytest.raises(ValidationError) as exc:
        await process_queue(session, customer.id)
    assert exc.value.detail == {"order_count": 2, "required": 3}


@pytest.mark.asyncio
async def test_process_queue_prunes_draft(session, make_customer, make_purchase):
    customer = await make_customer()
    purchases = [await make_purchase(customer) for _ in range(4)]
    draft = DraftState(
        bundles=[DraftBundle.of([purchases[0].id, purchases[3].id])],
        selected_purchase_ids=[purchases[1].id],
    )
    await write_draft(session, customer.id, draft)

    await process_queue(session, customer.id)

    remaining = await load_draft(session, customer.id)
    assert [b.purchase_ids for b in remaining.bundles] == [[purchases[3].id]]
    assert remaining.selected_purchase_ids == []


@pytest.mark.asyncio
async def test_auto_promote_respects_auto_create_flag(session, make_customer, make_purchase):
    customer = await make_customer()
    for _ in range(3):
        await make_purchase(customer)

    await update_settings(session, auto_create_discount=False)
    assert await auto_promote(session, customer.id) is None

    await update_settings(session, auto_create_discount=True)
    group = await auto_promote(session, customer.id)
    assert group is not None
    assert group.auto_created is True


@pytest.mark.asyncio
async def test_auto_promote_waits_for_threshold(session, make_customer, make_purchase):
    customer = await make_customer()
    await make_purchase(customer)
    assert await auto_promote(session, customer.id) is None


@pytest.mark.asyncio
async def test_sweep_creates_groups_while_queues_are_ready(session, make_customer, make_purchase):
    alice = await make_customer("Alice")
    bob = await make_customer("Bob")
    for _ in range(7):
        await make_purchase(alice)
    for _ in range(2):
        await make_purchase(bob)

    created = await sweep_auto_bonus(session)

    assert [g.customer_id for g in created] == [alice.id, alice.id]
    assert (await queue_status(session, alice.id))["order_count"] == 1
    assert (await queue_status(session, bob.id))["order_count"] == 2


@pytest.mark.asyncio
async def test_sweep_continues_past_a_failing_customer(session, make_customer, make_purchase):
    alice = await make_customer("Alice")
    bob = await make_customer("Bob")
    carol = await make_customer("Carol")
    for customer in (alice, bob, carol):
        for _ in range(3):
            await make_purchase(customer)
    alice_id, bob_id, carol_id = alice.id, bob.id, carol.id

    async def failing_for_bob(session, customer_id, *args, **kwargs):
        if customer_id == bob_id:
            raise DatabaseError("Failed to save bonus group", detail={"customer_id": customer_id})
        return await _create_group_locked(session, customer_id, *args, **kwargs)

    with patch("services.queue._create_group_locked", new=failing_for_bob):
        created = await sweep_auto_bonus(session)

    assert [g.customer_id for g in created] == [alice_id, carol_id]
    assert (await queue_status(session, bob_id))["status"] == QUEUE_READY


@pytest.mark.asyncio
async def test_sweep_does_nothing_when_disabled(session, make_customer, make_purchase):
    customer = await make_customer()
    for _ in range(3):
        await make_purchase(customer)
    await update_settings(session, auto_create_discount=False)

    assert await sweep_auto_bonus(session) == []
