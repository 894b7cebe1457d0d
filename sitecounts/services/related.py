from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from functools import lru_cache
import logging
import random

from opentelemetry import trace

from sitecounts.core.config import Settings, get_settings
from sitecounts.schemas.items import Item, ItemId, SelectionParameters, SelectionResult
from sitecounts.services.cache import (
    CacheBackend,
    InMemoryCacheBackend,
    NullCacheBackend,
    RedisCacheBackend,
    ResultCache,
    selection_cache_key,
)
from sitecounts.services.sampler import sample_with_report

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def build_cache_backend(settings: Settings) -> CacheBackend:
    if settings.cache_backend == "redis":
        if not settings.redis_url:
            raise ValueError("SC_REDIS_URL must be set when SC_CACHE_BACKEND=redis")
        return RedisCacheBackend.from_url(settings.redis_url)
    if settings.cache_backend == "none":
        return NullCacheBackend()
    return InMemoryCacheBackend()


@lru_cache
def get_result_cache() -> ResultCache:
    return ResultCache(build_cache_backend(get_settings()))


def build_selection_parameters(
    settings: Settings,
    *,
    anchor_id: ItemId | None,
    category: str | None = None,
    meta_value: str | None = None,
    target_size: int | None = None,
    max_attempts: int | None = None,
) -> SelectionParameters:
    return SelectionParameters(
        anchor_id=anchor_id,
        category=settings.related_category if category is None else category,
        meta_value=settings.related_meta_value if meta_value is None else meta_value,
        target_size=settings.related_target_size if target_size is None else target_size,
        max_attempts=settings.related_max_attempts if max_attempts is None else max_attempts,
    )


def select_related_items(
    pool: Sequence[Item],
    *,
    anchor_id: ItemId | None,
    category: str | None = None,
    meta_value: str | None = None,
    target_size: int | None = None,
    max_attempts: int | None = None,
    ttl_seconds: float | None = None,
    cache: ResultCache | None = None,
    settings: Settings | None = None,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> SelectionResult:
    settings = settings or get_settings()
    params = build_selection_parameters(
        settings,
        anchor_id=anchor_id,
        category=category,
        meta_value=meta_value,
        target_size=target_size,
        max_attempts=max_attempts,
    )
    ttl = settings.related_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
    key = selection_cache_key(params.anchor_id, params.category, params.meta_value, prefix=settings.cache_key_prefix)
    result_cache = cache or get_result_cache()
    computed = False

    def compute() -> SelectionResult:
        nonlocal computed
        computed = True
        with tracer.start_as_current_span("related_items.sample") as span:
            report = sample_with_report(pool, params, rng=rng)
            span.set_attribute("sample.pool_size", len(pool))
            span.set_attribute("sample.attempts", report.attempts)
            span.set_attribute("sample.exhausted", report.exhausted)
        return report.selected

    with tracer.start_as_current_span("related_items.select") as span:
        span.set_attribute("cache.key", key)
        span.set_attribute("related.target_size", params.target_size)
        result = result_cache.get_or_compute(key, compute, ttl, now=now)
        span.set_attribute("cache.hit", not computed)
        span.set_attribute("related.result_size", len(result))

    logger.info(
        "related items selected anchor=%s size=%s target=%s cache_hit=%s",
        params.anchor_id,
        len(result),
        params.target_size,
        not computed,
    )
    return result
