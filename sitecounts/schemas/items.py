from datetime import datetime
from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field

ItemId: TypeAlias = int | str
StatusCounts: TypeAlias = dict[str, int]


class Item(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: ItemId
    title: str = ""
    categories: frozenset[str] = Field(default_factory=frozenset)
    meta: dict[str, list[str]] = Field(default_factory=dict)


SelectionResult: TypeAlias = dict[ItemId, Item]


class SelectionParameters(BaseModel):
    """Inputs of one sampling run.

    An empty ``category`` or ``meta_value`` places no requirement on candidates;
    ``anchor_id=None`` disables anchor exclusion.
    """

    model_config = ConfigDict(frozen=True)

    anchor_id: ItemId | None = None
    category: str = ""
    meta_value: str = ""
    target_size: int = Field(default=5, ge=0)
    max_attempts: int = Field(default=1000, ge=0)


class CacheEntry(BaseModel):
    items: list[Item] = Field(default_factory=list)
    created_at: datetime
    ttl_seconds: float = Field(ge=0)

    def is_fresh(self, now: datetime, ttl_seconds: float | None = None) -> bool:
        window = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        return (now - self.created_at).total_seconds() < window

    def to_result(self) -> SelectionResult:
        return {item.id: item for item in self.items}
