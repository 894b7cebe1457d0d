from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from sitecounts.schemas.items import Item, ItemId, SelectionParameters

RejectReason = Literal["anchor", "category", "metadata", "duplicate"]


@dataclass(slots=True, frozen=True)
class CandidateCheck:
    accepted: bool
    reason: RejectReason | None = None


ACCEPTED = CandidateCheck(accepted=True)


def is_anchor(item: Item, anchor_id: ItemId | None) -> bool:
    """True when ``item`` is the anchor itself and must be rejected."""
    if anchor_id is None:
        return False
    return item.id == anchor_id and type(item.id) is type(anchor_id)


def has_category(item: Item, tag: str) -> bool:
    if tag == "":
        return True
    return tag in item.categories


def has_metadata_value(item: Item, value: str) -> bool:
    """True when any metadata key on ``item`` lists ``value``.

    Only the value is known, so every metadata entry of the item is scanned:
    this costs O(number of metadata values on the item) per call and is not an
    index lookup.
    """
    if value == "":
        return True
    for values in item.meta.values():
        if value in values:
            return True
    return False


def check_candidate(item: Item, params: SelectionParameters) -> CandidateCheck:
    # Cheapest first; all three must hold.
    if is_anchor(item, params.anchor_id):
        return CandidateCheck(accepted=False, reason="anchor")
    if not has_category(item, params.category):
        return CandidateCheck(accepted=False, reason="category")
    if not has_metadata_value(item, params.meta_value):
        return CandidateCheck(accepted=False, reason="metadata")
    return ACCEPTED
