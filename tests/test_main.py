from __future__ import annotations

import random

import pytest

from sitecounts.core.config import Settings, get_settings
from sitecounts.main import site_counts_runtime
from sitecounts.schemas.items import Item
from sitecounts.services import related
from sitecounts.services.cache import InMemoryCacheBackend, NullCacheBackend


def test_runtime_builds_cache_from_explicit_settings() -> None:
    settings = Settings(cache_backend="memory", otel_enabled=False)

    with site_counts_runtime(settings) as runtime:
        assert runtime.settings is settings
        assert runtime.telemetry.enabled is False
        assert isinstance(runtime.result_cache.backend, InMemoryCacheBackend)

        pool = [Item(id=2, categories=frozenset({"baz"}), meta={"review": ["Accepted"]})]
        result = related.select_related_items(
            pool,
            anchor_id=1,
            cache=runtime.result_cache,
            settings=settings,
            rng=random.Random(0),
        )
        assert list(result) == [2]


def test_runtime_defaults_to_process_wide_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SC_CACHE_BACKEND", "none")
    monkeypatch.setenv("SC_OTEL_ENABLED", "false")
    get_settings.cache_clear()
    related.get_result_cache.cache_clear()
    try:
        with site_counts_runtime() as runtime:
            assert runtime.result_cache is related.get_result_cache()
            assert isinstance(runtime.result_cache.backend, NullCacheBackend)
    finally:
        related.get_result_cache.cache_clear()
        get_settings.cache_clear()
