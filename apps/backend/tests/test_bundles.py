"""Unit tests for the pure draft operations."""
import pytest

from exceptions import ConflictError, ResourceNotFoundError, ValidationError
from services.bundles import (
    DraftBundle,
    DraftState,
    add_bundle,
    build_commit_bundles,
    build_draft,
    cancel_edit,
    deselect_purchase,
    prune_purchases,
    remove_bundle,
    remove_committed,
    remove_purchase_from_bundle,
    select_purchase,
    selection_units,
    start_edit_group,
    validate_manual_selection,
)


def _ids(draft):
    return [b.purchase_ids for b in draft.bundles]


def test_add_bundle_appends_and_flags_multi_purchase_bundles():
    draft = add_bundle(DraftState(), [1, 2])
    draft = add_bundle(draft, [3])
    assert _ids(draft) == [[1, 2], [3]]
    assert [b.is_bundle for b in draft.bundles] == [True, False]


def test_add_bundle_does_not_mutate_input():
    before = DraftState()
    add_bundle(before, [1])
    assert before.bundles == []


def test_add_bundle_rejects_empty_duplicate_and_reused_purchases():
    draft = add_bundle(DraftState(), [1, 2])
    with pytest.raises(ValidationError):
        add_bundle(draft, [])
    with pytest.raises(ValidationError):
        add_bundle(draft, [5, 5])
    with pytest.raises(ValidationError):
        add_bundle(draft, [2, 3])


def test_add_bundle_rejects_purchases_held_by_a_group():
    with pytest.raises(ValidationError) as exc:
        add_bundle(DraftState(), [7, 8], unavailable={8})
    assert exc.value.detail == {"purchase_ids": [8]}


def test_add_bundle_moves_purchases_out_of_direct_selection():
    draft = DraftState(selected_purchase_ids=[1, 4])
    draft = add_bundle(draft, [1, 2])
    assert draft.selected_purchase_ids == [4]


def test_remove_purchase_recomputes_bundle_flag():
    draft = add_bundle(DraftState(), [1, 2])
    draft = remove_purchase_from_bundle(draft, 0, 2)
    assert _ids(draft) == [[1]]
    assert draft.bundles[0].is_bundle is False


def test_removing_last_purchase_drops_the_bundle():
    draft = add_bundle(add_bundle(DraftState(), [1]), [2, 3])
    draft = remove_purchase_from_bundle(draft, 0, 1)
    assert _ids(draft) == [[2, 3]]


def test_remove_purchase_unknown_index_or_purchase():
    draft = add_bundle(DraftState(), [1])
    with pytest.raises(ResourceNotFoundError):
        remove_purchase_from_bundle(draft, 3, 1)
    with pytest.raises(ResourceNotFoundError):
        remove_purchase_from_bundle(draft, 0, 99)


def test_remove_bundle_shifts_imported_indices():
    draft = DraftState(
        bundles=[DraftBundle.of([1]), DraftBundle.of([2, 3]), DraftBundle.of([4, 5])],
        imported_indices=[1, 2],
        editing_group_id=9,
    )
    draft = remove_bundle(draft, 0)
    assert _ids(draft) == [[2, 3], [4, 5]]
    assert draft.imported_indices == [0, 1]


def test_start_edit_preserves_bundle_structure():
    draft = start_edit_group(DraftState(), 5, [(1, [3, 4]), (0, [1, 2])])
    assert _ids(draft) == [[1, 2], [3, 4]]
    assert draft.imported_indices == [0, 1]
    assert draft.editing_group_id == 5
    assert draft.selected_purchase_ids == []


def test_start_edit_of_single_purchase_bundles_seeds_selection():
    existing = add_bundle(DraftState(), [10, 11])
    draft = start_edit_group(existing, 5, [(0, [1]), (1, [2]), (2, [3])])
    assert draft.selected_purchase_ids == [1, 2, 3]
    assert _ids(draft) == [[10, 11]]
    assert draft.imported_indices == []


def test_start_edit_rejects_a_second_group():
    draft = start_edit_group(DraftState(), 5, [(0, [1, 2])])
    with pytest.raises(ConflictError):
        start_edit_group(draft, 6, [(0, [3, 4])])
    assert start_edit_group(draft, 5, [(0, [1, 2])]) == draft


def test_cancel_edit_removes_only_imported_bundles():
    draft = add_bundle(DraftState(), [10, 11])
    draft = start_edit_group(draft, 5, [(0, [1, 2]), (1, [3, 4])])
    draft = cancel_edit(draft)
    assert _ids(draft) == [[10, 11]]
    assert draft.editing_group_id is None
    assert draft.imported_indices == []


def test_cancel_edit_clears_seeded_selection():
    draft = start_edit_group(DraftState(), 5, [(0, [1]), (1, [2])])
    assert cancel_edit(draft).selected_purchase_ids == []


def test_edit_round_trip_keeps_earlier_selection():
    draft = select_purchase(add_bundle(DraftState(), [50]), 9)

    editing = start_edit_group(draft, 5, [(0, [1]), (1, [2]), (2, [3])])
    assert editing.selected_purchase_ids == [9, 1, 2, 3]
    assert editing.imported_purchase_ids == [1, 2, 3]

    cancelled = cancel_edit(editing)
    assert cancelled.selected_purchase_ids == [9]
    assert _ids(cancelled) == [[50]]
    assert cancelled.imported_purchase_ids == []


def test_bundle_edit_keeps_earlier_selection():
    draft = select_purchase(DraftState(), 9)
    editing = start_edit_group(draft, 5, [(0, [1, 2]), (1, [3])])
    assert editing.selected_purchase_ids == [9]
    assert cancel_edit(editing).selected_purchase_ids == [9]


def test_select_and_deselect_purchase():
    draft = select_purchase(DraftState(), 1)
    draft = select_purchase(draft, 1)
    assert draft.selected_purchase_ids == [1]
    assert deselect_purchase(draft, 1).selected_purchase_ids == []


def test_select_purchase_rejects_bundled_or_grouped_purchases():
    draft = add_bundle(DraftState(), [1, 2])
    with pytest.raises(ValidationError):
        select_purchase(draft, 2)
    with pytest.raises(ValidationError):
        select_purchase(draft, 3, unavailable={3})


def test_selection_units_counts_bundles_as_one():
    assert selection_units([0, 1], [7]) == 3
    assert selection_units([0, 0], [7, 7]) == 2


def test_manual_selection_must_be_exact():
    validate_manual_selection(3, 3)
    with pytest.raises(ValidationError) as under:
        validate_manual_selection(2, 3)
    assert under.value.detail["reason"] == "under_selection"
    with pytest.raises(ValidationError) as over:
        validate_manual_selection(4, 3)
    assert over.value.detail["reason"] == "over_selection"


def test_build_commit_bundles_orders_bundles_before_single_purchases():
    draft = DraftState(bundles=[DraftBundle.of([1, 2]), DraftBundle.of([3]), DraftBundle.of([4, 5])])
    assert build_commit_bundles(draft, [2, 0], [9, 8]) == [[1, 2], [4, 5], [9], [8]]


def test_build_commit_bundles_rejects_unknown_index_and_overlap():
    draft = DraftState(bundles=[DraftBundle.of([1, 2])])
    with pytest.raises(ResourceNotFoundError):
        build_commit_bundles(draft, [1], [])
    with pytest.raises(ValidationError):
        build_commit_bundles(draft, [0], [2])


def test_remove_committed_keeps_unselected_bundles():
    draft = DraftState(
        bundles=[DraftBundle.of([1, 2]), DraftBundle.of([3])],
        selected_purchase_ids=[7, 8],
        editing_group_id=4,
        imported_indices=[0],
    )
    remaining = remove_committed(draft, [0], [7])
    assert _ids(remaining) == [[3]]
    assert remaining.selected_purchase_ids == [8]
    assert remaining.editing_group_id is None


def test_prune_purchases_drops_emptied_bundles():
    draft = DraftState(
        bundles=[DraftBundle.of([1]), DraftBundle.of([2, 3]), DraftBundle.of([4, 5])],
        selected_purchase_ids=[6],
        imported_indices=[2],
    )
    pruned = prune_purchases(draft, [1, 3, 6])
    assert _ids(pruned) == [[2], [4, 5]]
    assert pruned.bundles[0].is_bundle is False
    assert pruned.imported_indices == [1]
    assert pruned.selected_purchase_ids == []


def test_build_draft_validates_whole_replacement():
    draft = build_draft([[1, 2], [3]], [4])
    assert _ids(draft) == [[1, 2], [3]]
    with pytest.raises(ValidationError):
        build_draft([[1], [1]])
    with pytest.raises(ValidationError):
        build_draft([[]])
    with pytest.raises(ValidationError):
        build_draft([[1]], unavailable={1})
