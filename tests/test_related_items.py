from __future__ import annotations

import random

import pytest
from pydantic import ValidationError

from sitecounts.core.config import Settings, get_settings
from sitecounts.schemas.items import Item
from sitecounts.services import related
from sitecounts.services.cache import InMemoryCacheBackend, NullCacheBackend, RedisCacheBackend, ResultCache


def _pool() -> list[Item]:
    return [
        Item(id=1, title="Anchor", categories=frozenset({"baz"}), meta={"review": ["Accepted"]}),
        Item(id=2, title="Match A", categories=frozenset({"baz", "foo"}), meta={"review": ["Accepted"]}),
        Item(id=3, title="Match B", categories=frozenset({"baz"}), meta={"note": ["x"], "review": ["Accepted"]}),
        Item(id=4, title="Wrong category", categories=frozenset({"qux"}), meta={"review": ["Accepted"]}),
        Item(id=5, title="Wrong meta", categories=frozenset({"baz"}), meta={"review": ["Pending"]}),
    ]


def _settings(**overrides) -> Settings:
    values = {
        "related_category": "baz",
        "related_meta_value": "Accepted",
        "related_target_size": 5,
        "related_max_attempts": 500,
        "related_cache_ttl_seconds": 300.0,
        "otel_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


def test_select_related_items_uses_configured_defaults() -> None:
    result = related.select_related_items(
        _pool(),
        anchor_id=1,
        cache=ResultCache(InMemoryCacheBackend()),
        settings=_settings(),
        rng=random.Random(11),
    )

    assert sorted(result) == [2, 3]
    assert {item.title for item in result.values()} == {"Match A", "Match B"}


def test_select_related_items_explicit_filters_override_settings() -> None:
    result = related.select_related_items(
        _pool(),
        anchor_id=1,
        category="qux",
        meta_value="",
        cache=ResultCache(InMemoryCacheBackend()),
        settings=_settings(),
        rng=random.Random(2),
    )

    assert list(result) == [4]


def test_select_related_items_serves_cached_result_within_window() -> None:
    cache = ResultCache(InMemoryCacheBackend())
    settings = _settings()

    first = related.select_related_items(_pool(), anchor_id=1, cache=cache, settings=settings, rng=random.Random(4))
    second = related.select_related_items([], anchor_id=1, cache=cache, settings=settings)

    assert second == first


def test_target_size_is_not_part_of_the_cache_key() -> None:
    cache = ResultCache(InMemoryCacheBackend())
    settings = _settings()

    small = related.select_related_items(
        _pool(), anchor_id=1, target_size=1, cache=cache, settings=settings, rng=random.Random(5)
    )
    larger = related.select_related_items(
        _pool(), anchor_id=1, target_size=5, cache=cache, settings=settings, rng=random.Random(5)
    )

    assert len(small) == 1
    assert larger == small


def test_select_related_items_rejects_negative_target_size() -> None:
    with pytest.raises(ValidationError):
        related.select_related_items(
            _pool(),
            anchor_id=1,
            target_size=-1,
            cache=ResultCache(InMemoryCacheBackend()),
            settings=_settings(),
        )


def test_build_cache_backend_follows_settings() -> None:
    assert isinstance(related.build_cache_backend(_settings()), InMemoryCacheBackend)
    assert isinstance(related.build_cache_backend(_settings(cache_backend="none")), NullCacheBackend)
    assert isinstance(
        related.build_cache_backend(_settings(cache_backend="redis", redis_url="redis://localhost:6379/0")),
        RedisCacheBackend,
    )
    with pytest.raises(ValueError, match="SC_REDIS_URL"):
        related.build_cache_backend(_settings(cache_backend="redis"))


def test_get_result_cache_is_process_wide(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SC_CACHE_BACKEND", "none")
    get_settings.cache_clear()
    related.get_result_cache.cache_clear()
    try:
        cache = related.get_result_cache()
        assert cache is related.get_result_cache()
        assert isinstance(cache.backend, NullCacheBackend)
    finally:
        related.get_result_cache.cache_clear()
        get_settings.cache_clear()
