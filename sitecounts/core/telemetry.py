from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from sitecounts.core.config import Settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
_OTLP_ENDPOINT_VARS = ("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "OTEL_EXPORTER_OTLP_ENDPOINT")

_base_record_factory = logging.getLogRecordFactory()
_correlation_installed = False


@dataclass(slots=True)
class TelemetryRuntime:
    enabled: bool
    provider: TracerProvider | None


def configure_logging(level: int = logging.INFO) -> None:
    """Stamp every record with the active span ids; add a root handler if none exists."""
    _install_log_correlation()
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)


def resource_attributes(settings: Settings) -> dict[str, Any]:
    return {
        SERVICE_NAME: settings.otel_service_name,
        DEPLOYMENT_ENVIRONMENT: settings.environment,
        "sitecounts.cache_backend": settings.cache_backend,
        "sitecounts.cache_ttl_seconds": settings.related_cache_ttl_seconds,
        "sitecounts.related.target_size": settings.related_target_size,
        "sitecounts.related.max_attempts": settings.related_max_attempts,
    }


def setup_telemetry(settings: Settings) -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime(enabled=False, provider=None)
    if settings.otel_log_correlation:
        _install_log_correlation()

    provider = TracerProvider(
        resource=Resource.create(resource_attributes(settings)),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    if _exporter_configured(settings):
        # Endpoint/headers left as None fall back to the OTEL_EXPORTER_OTLP_* variables.
        exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            headers=parse_headers(settings.otel_exporter_otlp_headers) or None,
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        logger.info("no OTLP endpoint configured; selection spans stay in-process for service=%s", settings.otel_service_name)
    trace.set_tracer_provider(provider)
    return TelemetryRuntime(enabled=True, provider=provider)


def shutdown_telemetry(runtime: TelemetryRuntime) -> None:
    if runtime.provider is None:
        return
    runtime.provider.force_flush()
    runtime.provider.shutdown()


def parse_headers(raw: str | None) -> dict[str, str]:
    if not raw:
        return {}
    pairs = (chunk.partition("=") for chunk in raw.split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip()}


def _exporter_configured(settings: Settings) -> bool:
    return bool(settings.otel_exporter_otlp_endpoint or any(os.getenv(name) for name in _OTLP_ENDPOINT_VARS))


def _install_log_correlation() -> None:
    global _correlation_installed
    if _correlation_installed:
        return

    def record_factory(*args: object, **kwargs: object) -> logging.LogRecord:
        record = _base_record_factory(*args, **kwargs)
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id, "032x") if context.is_valid else "0" * 32
        record.span_id = format(context.span_id, "016x") if context.is_valid else "0" * 16
        return record

    logging.setLogRecordFactory(record_factory)
    _correlation_installed = True
