from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
import logging

from sitecounts.core.config import Settings, get_settings
from sitecounts.core.telemetry import TelemetryRuntime, configure_logging, setup_telemetry, shutdown_telemetry
from sitecounts.services.cache import ResultCache
from sitecounts.services.related import build_cache_backend, get_result_cache

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    settings: Settings
    telemetry: TelemetryRuntime
    result_cache: ResultCache


@contextmanager
def site_counts_runtime(settings: Settings | None = None) -> Iterator[Runtime]:
    """Host bootstrap: logging, tracing and the selection cache for one process.

    Without explicit settings the process-wide cache from ``get_result_cache``
    is used, so ``select_related_items`` calls made inside the block share it.
    """
    if settings is None:
        settings = get_settings()
        result_cache = get_result_cache()
    else:
        result_cache = ResultCache(build_cache_backend(settings))

    configure_logging()
    telemetry_runtime = setup_telemetry(settings)
    logger.info(
        "site-counts runtime ready environment=%s cache_backend=%s ttl_seconds=%s tracing=%s",
        settings.environment,
        settings.cache_backend,
        settings.related_cache_ttl_seconds,
        telemetry_runtime.enabled,
    )
    try:
        yield Runtime(settings=settings, telemetry=telemetry_runtime, result_cache=result_cache)
    finally:
        shutdown_telemetry(telemetry_runtime)
