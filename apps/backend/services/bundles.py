"""
Bundle assembler: pure operations on a customer's draft.

Every operation returns a new DraftState and leaves its input untouched,
so callers can persist (or discard) the result as a whole. Indices refer
to positions in DraftState.bundles.
"""

from typing import Collection, Iterable, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from exceptions import ConflictError, ResourceNotFoundError, ValidationError


class DraftBundle(BaseModel):
    purchase_ids: List[int]
    is_bundle: bool = False

    @classmethod
    def of(cls, purchase_ids: Iterable[int]) -> "DraftBundle":
        ids = list(purchase_ids)
        return cls(purchase_ids=ids, is_bundle=len(ids) > 1)


class DraftState(BaseModel):
    bundles: List[DraftBundle] = Field(default_factory=list)
    selected_purchase_ids: List[int] = Field(default_factory=list)
    editing_group_id: Optional[int] = None
    imported_indices: List[int] = Field(default_factory=list)
    imported_purchase_ids: List[int] = Field(default_factory=list)

    def bundled_purchase_ids(self) -> Set[int]:
        return {pid for bundle in self.bundles for pid in bundle.purchase_ids}

    def all_purchase_ids(self) -> Set[int]:
        return self.bundled_purchase_ids() | set(self.selected_purchase_ids)

    def is_empty(self) -> bool:
        return not self.bundles and not self.selected_purchase_ids and self.editing_group_id is None


def _copy(draft: DraftState) -> DraftState:
    return draft.model_copy(deep=True)


def _duplicates(ids: Sequence[int]) -> List[int]:
    seen, dupes = set(), []
    for pid in ids:
        if pid in seen and pid not in dupes:
            dupes.append(pid)
        seen.add(pid)
    return dupes


def _check_index(draft: DraftState, bundle_index: int) -> None:
    if bundle_index < 0 or bundle_index >= len(draft.bundles):
        raise ResourceNotFoundError("Draft bundle not found", detail={"bundle_index": bundle_index})


def _drop_index(indices: Iterable[int], removed: int) -> List[int]:
    """Remove one bundle index and shift the later ones down."""
    return [i if i < removed else i - 1 for i in indices if i != removed]


def add_bundle(
    draft: DraftState,
    purchase_ids: Sequence[int],
    unavailable: Collection[int] = (),
) -> DraftState:
    """Append a bundle. Purchases must be new to the draft and not held by a group."""
    ids = list(purchase_ids)
    if not ids:
        raise ValidationError("A bundle needs at least one purchase")
    dupes = _duplicates(ids)
    if dupes:
        raise ValidationError("Purchase listed more than once", detail={"purchase_ids": dupes})

    in_draft = sorted(set(ids) & draft.bundled_purchase_ids())
    if in_draft:
        raise ValidationError("Purchases are already in a draft bundle", detail={"purchase_ids": in_draft})
    grouped = sorted(set(ids) & set(unavailable))
    if grouped:
        raise ValidationError("Purchases are already in a bonus group", detail={"purchase_ids": grouped})

    new = _copy(draft)
    new.bundles.append(DraftBundle.of(ids))
    new.selected_purchase_ids = [pid for pid in new.selected_purchase_ids if pid not in ids]
    new.imported_purchase_ids = [pid for pid in new.imported_purchase_ids if pid not in ids]
    return new


def remove_purchase_from_bundle(draft: DraftState, bundle_index: int, purchase_id: int) -> DraftState:
    """Take one purchase out of a bundle; a bundle left empty disappears."""
    _check_index(draft, bundle_index)
    if purchase_id not in draft.bundles[bundle_index].purchase_ids:
        raise ResourceNotFoundError(
            "Purchase is not in this draft bundle",
            detail={"bundle_index": bundle_index, "purchase_id": purchase_id},
        )

    new = _copy(draft)
    bundle = new.bundles[bundle_index]
    bundle.purchase_ids = [pid for pid in bundle.purchase_ids if pid != purchase_id]
    if not bundle.purchase_ids:
        del new.bundles[bundle_index]
        new.imported_indices = _drop_index(new.imported_indices, bundle_index)
    else:
        bundle.is_bundle = len(bundle.purchase_ids) > 1
    return new


def remove_bundle(draft: DraftState, bundle_index: int) -> DraftState:
    _check_index(draft, bundle_index)
    new = _copy(draft)
    del new.bundles[bundle_index]
    new.imported_indices = _drop_index(new.imported_indices, bundle_index)
    return new


def start_edit_group(
    draft: DraftState,
    group_id: int,
    group_bundles: Sequence[Tuple[int, List[int]]],
) -> DraftState:
    """
    Load a committed group back into the draft for editing.

    group_bundles is [(bundle_index, purchase_ids), ...]. When every bundle
    holds a single purchase the group becomes a plain selection; otherwise
    its bundles are appended in bundle_index order. Either way the draft's
    earlier bundles and selections stay, and what the edit added is
    remembered so cancel_edit can take back exactly that.
    """
    if draft.editing_group_id is not None:
        if draft.editing_group_id == group_id:
            return _copy(draft)
        raise ConflictError(
            "Another bonus group is already being edited",
            detail={"editing_group_id": draft.editing_group_id},
        )

    ordered = [list(ids) for _, ids in sorted(group_bundles, key=lambda item: item[0])]
    overlap = sorted({pid for ids in ordered for pid in ids} & draft.all_purchase_ids())
    if overlap:
        raise ValidationError("Group purchases are already in the draft", detail={"purchase_ids": overlap})

    new = _copy(draft)
    new.editing_group_id = group_id
    if all(len(ids) == 1 for ids in ordered):
        seeded = [ids[0] for ids in ordered]
        new.selected_purchase_ids.extend(seeded)
        new.imported_purchase_ids = seeded
        new.imported_indices = []
    else:
        start = len(new.bundles)
        new.bundles.extend(DraftBundle.of(ids) for ids in ordered)
        new.imported_indices = list(range(start, len(new.bundles)))
        new.imported_purchase_ids = []
    return new


def cancel_edit(draft: DraftState, imported_indices: Optional[Iterable[int]] = None) -> DraftState:
    """Leave edit mode, removing exactly the bundles and selections the edit imported."""
    drop = set(draft.imported_indices if imported_indices is None else imported_indices)
    seeded = set(draft.imported_purchase_ids)
    new = _copy(draft)
    new.bundles = [bundle for i, bundle in enumerate(new.bundles) if i not in drop]
    new.selected_purchase_ids = [pid for pid in new.selected_purchase_ids if pid not in seeded]
    new.editing_group_id = None
    new.imported_indices = []
    new.imported_purchase_ids = []
    return new


def select_purchase(draft: DraftState, purchase_id: int, unavailable: Collection[int] = ()) -> DraftState:
    if purchase_id in draft.bundled_purchase_ids():
        raise ValidationError("Purchase is already in a draft bundle", detail={"purchase_id": purchase_id})
    if purchase_id in unavailable:
        raise ValidationError("Purchase is already in a bonus group", detail={"purchase_id": purchase_id})
    new = _copy(draft)
    if purchase_id not in new.selected_purchase_ids:
        new.selected_purchase_ids.append(purchase_id)
    return new


def deselect_purchase(draft: DraftState, purchase_id: int) -> DraftState:
    new = _copy(draft)
    new.selected_purchase_ids = [pid for pid in new.selected_purchase_ids if pid != purchase_id]
    new.imported_purchase_ids = [pid for pid in new.imported_purchase_ids if pid != purchase_id]
    return new


def selection_units(bundle_indices: Iterable[int], purchase_ids: Iterable[int]) -> int:
    """Each selected bundle and each directly selected purchase is one unit."""
    return len(set(bundle_indices)) + len(set(purchase_ids))


def validate_manual_selection(units: int, required: int) -> None:
    if units < required:
        raise ValidationError(
            f"Select exactly {required} purchases or bundles ({units} selected)",
            detail={"selected_units": units, "required": required, "reason": "under_selection"},
        )
    if units > required:
        raise ValidationError(
            f"Too many items selected: exactly {required} purchases or bundles required ({units} selected)",
            detail={"selected_units": units, "required": required, "reason": "over_selection"},
        )


def build_commit_bundles(
    draft: DraftState,
    bundle_indices: Sequence[int],
    purchase_ids: Sequence[int],
) -> List[List[int]]:
    """Selected draft bundles first (in draft order), then each direct purchase as its own bundle."""
    for index in bundle_indices:
        _check_index(draft, index)
    bundled = draft.bundled_purchase_ids()
    in_bundles = sorted(set(purchase_ids) & bundled)
    if in_bundles:
        raise ValidationError(
            "Purchases selected directly are also in a draft bundle",
            detail={"purchase_ids": in_bundles},
        )

    result = [list(draft.bundles[i].purchase_ids) for i in sorted(set(bundle_indices))]
    seen: Set[int] = set()
    for pid in purchase_ids:
        if pid not in seen:
            result.append([pid])
            seen.add(pid)
    return result


def remove_committed(
    draft: DraftState,
    bundle_indices: Iterable[int],
    purchase_ids: Iterable[int],
) -> DraftState:
    """Draft after a commit: committed bundles and selections gone, edit mode closed."""
    drop = set(bundle_indices)
    committed = set(purchase_ids)
    new = _copy(draft)
    new.bundles = [bundle for i, bundle in enumerate(new.bundles) if i not in drop]
    new.selected_purchase_ids = [pid for pid in new.selected_purchase_ids if pid not in committed]
    new.editing_group_id = None
    new.imported_indices = []
    new.imported_purchase_ids = []
    return new


def prune_purchases(draft: DraftState, purchase_ids: Iterable[int]) -> DraftState:
    """Drop purchases that were claimed elsewhere; bundles left empty disappear."""
    gone = set(purchase_ids)
    new = _copy(draft)
    kept: List[DraftBundle] = []
    imported: List[int] = []
    for i, bundle in enumerate(new.bundles):
        ids = [pid for pid in bundle.purchase_ids if pid not in gone]
        if not ids:
            continue
        if i in draft.imported_indices:
            imported.append(len(kept))
        kept.append(DraftBundle.of(ids))
    new.bundles = kept
    new.imported_indices = imported
    new.selected_purchase_ids = [pid for pid in new.selected_purchase_ids if pid not in gone]
    new.imported_purchase_ids = [pid for pid in new.imported_purchase_ids if pid not in gone]
    return new


def build_draft(
    bundles: Sequence[Sequence[int]],
    selected_purchase_ids: Sequence[int] = (),
    unavailable: Collection[int] = (),
) -> DraftState:
    """Validate a whole replacement draft."""
    if any(not ids for ids in bundles):
        raise ValidationError("A bundle needs at least one purchase")
    flat = [pid for ids in bundles for pid in ids] + list(selected_purchase_ids)
    dupes = _duplicates(flat)
    if dupes:
        raise ValidationError("Purchase appears more than once in the draft", detail={"purchase_ids": dupes})
    grouped = sorted(set(flat) & set(unavailable))
    if grouped:
        raise ValidationError("Purchases are already in a bonus group", detail={"purchase_ids": grouped})
    return DraftState(
        bundles=[DraftBundle.of(ids) for ids in bundles],
        selected_purchase_ids=list(selected_purchase_ids),
    )


def draft_to_dict(draft: DraftState) -> dict:
    return {
        "bundles": [
            {"index": i, "purchase_ids": b.purchase_ids, "is_bundle": b.is_bundle}
            for i, b in enumerate(draft.bundles)
        ],
        "selected_purchase_ids": draft.selected_purchase_ids,
        "editing_group_id": draft.editing_group_id,
        "imported_indices": draft.imported_indices,
        "imported_purchase_ids": draft.imported_purchase_ids,
    }
