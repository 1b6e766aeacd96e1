"""
API tests for the bonus screen: overview, group lifecycle, drafts and queue.

Verifies:
- Both request formats for creating groups
- Error bodies carry the exception type and message
- Draft edits stay visible when their save fails
"""

from unittest.mock import AsyncMock, patch

import pytest

from exceptions import PersistenceError


async def _customer_with_purchases(make_customer, make_purchase, count=4, name="Ada Lovelace"):
    customer = await make_customer(name, email="ada@example.com")
    purchases = [await make_purchase(customer) for _ in range(count)]
    return customer, [p.id for p in purchases]


@pytest.mark.asyncio
async def test_overview_reports_groups_queue_and_summary(client, make_customer, make_purchase):
    customer = await make_customer()
    p1 = await make_purchase(customer, lines=[(100, True), (20, False)])
    others = [await make_purchase(customer) for _ in range(3)]
    p2, p3, p4 = [p.id for p in others]

    created = await client.post(f"/discount/{customer.id}/groups", json={"order_ids": [p1.id, p2, p3]})
    assert created.status_code == 201

    response = await client.get(f"/discount/{customer.id}")
    assert response.status_code == 200
    data = response.json()

    assert data["customer"]["id"] == customer.id
    assert [g["state"] for g in data["groups"]] == ["redeemable"]
    assert data["queue"]["purchase_ids"] == [p4]
    assert data["settings"]["orders_required_for_discount"] == 3

    summary = data["summary"]
    assert summary["redeemable_bonus"] == 30.0
    assert summary["pending_bonus"] == 0.0
    assert summary["projected_bonus"] == 10.0
    assert summary["order_count"] == 4
    assert summary["item_count"] == 5
    assert summary["total_order_value"] == 420.0

    by_id = {p["id"]: p for p in data["purchases"]}
    assert by_id[p1.id]["eligible_amount"] == 100.0
    assert by_id[p1.id]["group_status"] == "active"
    assert by_id[p4]["group_id"] is None


@pytest.mark.asyncio
async def test_create_group_with_bundle_entries(client, make_customer, make_purchase):
    customer, (p1, p2, p3, _) = await _customer_with_purchases(make_customer, make_purchase)

    response = await client.post(
        f"/discount/{customer.id}/groups",
        json={
            "order_ids": [
                {"purchase_id": p1, "bundle_index": 0},
                {"purchase_id": p2, "bundle_index": 0},
                {"purchase_id": p3, "bundle_index": 1},
            ]
        },
    )

    assert response.status_code == 201
    group = response.json()
    assert group["unique_bundle_count"] == 2
    assert group["state"] == "pending"
    assert group["is_pending"] is True
    assert group["bundles"][0] == {"bundle_index": 0, "purchase_ids": [p1, p2], "is_bundle": True}
    assert group["total_discount"] == 30.0


@pytest.mark.asyncio
async def test_validation_error_body(client, make_customer, make_purchase):
    customer, (p1, *_rest) = await _customer_with_purchases(make_customer, make_purchase)

    response = await client.post(f"/discount/{customer.id}/groups", json={"order_ids": [p1]})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "ValidationError"
    assert "at least 2 purchases" in body["message"]


@pytest.mark.asyncio
async def test_unknown_customer_is_404(client):
    response = await client.get("/discount/98765")
    assert response.status_code == 404
    assert response.json()["error"] == "ResourceNotFoundError"


@pytest.mark.asyncio
async def test_redeem_then_redeem_again_conflicts(client, make_customer, make_purchase):
    customer, (p1, p2, p3, _) = await _customer_with_purchases(make_customer, make_purchase)
    group = (await client.post(f"/discount/{customer.id}/groups", json={"order_ids": [p1, p2, p3]})).json()

    first = await client.put(f"/discount/{customer.id}/groups/{group['id']}/redeem")
    assert first.status_code == 200
    assert first.json()["state"] == "redeemed"
    assert first.json()["redeemed_at"] is not None

    second = await client.put(f"/discount/{customer.id}/groups/{group['id']}/redeem")
    assert second.status_code == 409
    assert second.json()["error"] == "ConflictError"

    delete = await client.delete(f"/discount/{customer.id}/groups/{group['id']}")
    assert delete.status_code == 409


@pytest.mark.asyncio
async def test_redeem_below_threshold_is_400(client, make_customer, make_purchase):
    customer, (p1, p2, _, _) = await _customer_with_purchases(make_customer, make_purchase)
    group = (await client.post(f"/discount/{customer.id}/groups", json={"order_ids": [p1, p2]})).json()

    response = await client.put(f"/discount/{customer.id}/groups/{group['id']}/redeem")
    assert response.status_code == 400
    assert response.json()["detail"]["required"] == 3


@pytest.mark.asyncio
async def test_update_and_delete_group(client, make_customer, make_purchase):
    customer, (p1, p2, p3, p4) = await _customer_with_purchases(make_customer, make_purchase)
    group = (await client.post(f"/discount/{customer.id}/groups", json={"order_ids": [p1, p2]})).json()

    updated = await client.put(
        f"/discount/{customer.id}/groups/{group['id']}",
        json={"order_ids": [p2, p3, p4], "discount_rate": "5"},
    )
    assert updated.status_code == 200
    assert updated.json()["unique_bundle_count"] == 3
    assert updated.json()["discount_rate"] == 5.0
    assert updated.json()["total_discount"] == 15.0

    deleted = await client.delete(f"/discount/{customer.id}/groups/{group['id']}")
    assert deleted.status_code == 200
    assert deleted.json() == {
        "status": "deleted",
        "group_id": group["id"],
        "released_purchase_ids": sorted([p2, p3, p4]),
    }

    overview = (await client.get(f"/discount/{customer.id}")).json()
    assert overview["groups"] == []
    assert overview["queue"]["order_count"] == 4


@pytest.mark.asyncio
async def test_list_customers_with_bonus_stats(client, make_customer, make_purchase):
    customer, (p1, p2, p3, _) = await _customer_with_purchases(make_customer, make_purchase)
    await make_customer("Grace Hopper")
    await client.post(f"/discount/{customer.id}/groups", json={"order_ids": [p1, p2, p3]})

    response = await client.get("/discount", params={"search": "ada"})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    item = data["items"][0]
    assert item["id"] == customer.id
    assert item["group_count"] == 1
    assert item["redeemable_bonus"] == 30.0

    # customers without groups are not listed
    everyone = (await client.get("/discount")).json()
    assert [c["id"] for c in everyone["items"]] == [customer.id]


@pytest.mark.asyncio
async def test_group_creation_prunes_draft(client, autosaver, make_customer, make_purchase):
    customer, (p1, p2, p3, p4) = await _customer_with_purchases(make_customer, make_purchase)
    await client.put(
        f"/discount/{customer.id}/draft",
        json={"bundles": [{"purchase_ids": [p1, p4]}], "selected_purchase_ids": [p2]},
    )

    await client.post(f"/discount/{customer.id}/groups", json={"order_ids": [p1, p2, p3]})

    draft = (await client.get(f"/discount/{customer.id}")).json()["draft"]
    assert draft["bundles"] == [{"index": 0, "purchase_ids": [p4], "is_bundle": False}]
    assert draft["selected_purchase_ids"] == []


@pytest.mark.asyncio
async def test_draft_flow_to_commit(client, make_customer, make_purchase):
    customer, (p1, p2, p3, p4) = await _customer_with_purchases(make_customer, make_purchase)
    base = f"/discount/{customer.id}/draft"

    added = await client.post(f"{base}/bundles", json={"purchase_ids": [p1, p2]})
    assert added.status_code == 201
    assert added.json()["bundles"][0]["is_bundle"] is True

    await client.post(f"{base}/selection/{p3}")
    selected = await client.post(f"{base}/selection/{p4}")
    assert selected.json()["selected_purchase_ids"] == [p3, p4]

    under = await client.post(f"{base}/commit", json={"bundle_indices": [0], "purchase_ids": [p3]})
    assert under.status_code == 400
    assert under.json()["detail"]["reason"] == "under_selection"

    committed = await client.post(f"{base}/commit", json={"bundle_indices": [0], "purchase_ids": [p3, p4]})
    assert committed.status_code == 201
    assert committed.json()["state"] == "redeemable"

    draft = (await client.get(f"/discount/{customer.id}")).json()["draft"]
    assert draft["bundles"] == []
    assert draft["selected_purchase_ids"] == []


@pytest.mark.asyncio
async def test_edit_group_through_draft(client, make_customer, make_purchase):
    customer, (p1, p2, p3, p4) = await _customer_with_purchases(make_customer, make_purchase)
    group = (
        await client.post(
            f"/discount/{customer.id}/groups",
            json={"order_ids": [{"purchase_id": p1, "bundle_index": 0}, {"purchase_id": p2, "bundle_index": 0}, p3]},
        )
    ).json()
    base = f"/discount/{customer.id}/draft"

    started = await client.post(f"{base}/edit/{group['id']}")
    assert started.status_code == 200
    assert started.json()["editing_group_id"] == group["id"]
    assert [b["purchase_ids"] for b in started.json()["bundles"]] == [[p1, p2], [p3]]

    removed = await client.delete(f"{base}/bundles/0/purchases/{p2}")
    assert [b["purchase_ids"] for b in removed.json()["bundles"]] == [[p1], [p3]]

    cancelled = await client.post(f"{base}/edit/cancel")
    assert cancelled.json()["bundles"] == []
    assert cancelled.json()["editing_group_id"] is None


@pytest.mark.asyncio
async def test_draft_edit_survives_failed_save(client, autosaver, make_customer, make_purchase):
    customer, (p1, *_rest) = await _customer_with_purchases(make_customer, make_purchase)

    with patch("services.drafts.write_draft", new=AsyncMock(side_effect=PersistenceError("disk full"))):
        response = await client.post(f"/discount/{customer.id}/draft/bundles", json={"purchase_ids": [p1]})
        await autosaver.drain()

    assert response.status_code == 201
    draft = (await client.get(f"/discount/{customer.id}")).json()["draft"]
    assert draft["bundles"][0]["purchase_ids"] == [p1]
    assert autosaver.pending_count() == 1


@pytest.mark.asyncio
async def test_queue_endpoints(client, make_customer, make_purchase):
    customer, purchase_ids = await _customer_with_purchases(make_customer, make_purchase)

    status = (await client.get(f"/queue/{customer.id}")).json()
    assert status["status"] == "ready"
    assert status["ready_for_discount"] is True

    processed = await client.post(f"/queue/{customer.id}/process")
    assert processed.status_code == 201
    assert processed.json()["auto_created"] is True
    assert [b["purchase_ids"] for b in processed.json()["bundles"]] == [[pid] for pid in purchase_ids[:3]]

    again = await client.post(f"/queue/{customer.id}/process")
    assert again.status_code == 400

    sweep = await client.post("/queue/sweep")
    assert sweep.json() == {"created": 0, "groups": []}
