"""OpenTelemetry tracing configuration for PromptVault.

Gate decisions are attached to the current span (operation, decision code,
actor id). Content, system instructions, session tokens and step-up codes are
never exported.

Environment Variables:
    PROMPTVAULT_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    PROMPTVAULT_REQUIRE_OTEL: Set to "1" to fail startup if tracing cannot initialize
    PROMPTVAULT_OTEL_SERVICE_NAME: Service name for spans (default: "promptvault")
    PROMPTVAULT_OTEL_EXPORTER: Exporter type - "otlp" or "console" (default: "console")
    PROMPTVAULT_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (optional)
    PROMPTVAULT_OTEL_TEST_CAPTURE: Set to "1" to use in-memory exporter for tests
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from promptvault.config import env_flag

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

ENV_OTEL_ENABLED = "PROMPTVAULT_OTEL_ENABLED"
ENV_REQUIRE_OTEL = "PROMPTVAULT_REQUIRE_OTEL"
ENV_OTEL_SERVICE_NAME = "PROMPTVAULT_OTEL_SERVICE_NAME"
ENV_OTEL_EXPORTER = "PROMPTVAULT_OTEL_EXPORTER"
ENV_OTEL_ENDPOINT = "PROMPTVAULT_OTEL_EXPORTER_OTLP_ENDPOINT"
ENV_OTEL_TEST_CAPTURE = "PROMPTVAULT_OTEL_TEST_CAPTURE"

_tracer_provider: TracerProvider | None = None
_is_configured: bool = False
_test_exporter: Any = None


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and PROMPTVAULT_REQUIRE_OTEL=1."""


def _create_otlp_exporter(endpoint: str | None) -> Any:
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    return OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()


def configure_tracing() -> bool:
    """Configure OpenTelemetry tracing for PromptVault.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If PROMPTVAULT_REQUIRE_OTEL=1 and configuration fails.
    """
    global _tracer_provider, _is_configured, _test_exporter

    if not env_flag(ENV_OTEL_ENABLED):
        _is_configured = True
        logger.debug("OpenTelemetry tracing disabled (%s not set)", ENV_OTEL_ENABLED)
        return False

    test_capture = env_flag(ENV_OTEL_TEST_CAPTURE)
    if _test_exporter is not None and test_capture:
        return True
    if _is_configured and _tracer_provider is not None:
        return True

    _is_configured = True

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )
        from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
            InMemorySpanExporter,
        )

        service_name = os.environ.get(ENV_OTEL_SERVICE_NAME, "promptvault").strip()
        exporter_type = os.environ.get(ENV_OTEL_EXPORTER, "console").strip().lower()
        endpoint = os.environ.get(ENV_OTEL_ENDPOINT, "").strip()

        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

        if test_capture:
            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        elif exporter_type == "otlp":
            provider.add_span_processor(BatchSpanProcessor(_create_otlp_exporter(endpoint or None)))
        else:
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider

        logger.info(
            "OpenTelemetry tracing configured: service=%s, exporter=%s",
            service_name,
            "in-memory" if test_capture else exporter_type,
        )
        return True

    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if env_flag(ENV_REQUIRE_OTEL):
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application with OpenTelemetry."""
    if not env_flag(ENV_OTEL_ENABLED):
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
        logger.debug("FastAPI instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


def get_current_trace_id() -> str | None:
    """Hex trace id of the current span, or None if there is no valid span."""
    from opentelemetry import trace

    ctx = trace.get_current_span().get_span_context()
    if ctx is None or not ctx.is_valid:
        return None
    return format(ctx.trace_id, "032x")


def set_span_attributes(attributes: dict[str, Any]) -> None:
    """Set attributes on the current span, skipping None values."""
    try:
        from opentelemetry import trace

        span = trace.get_current_span()
        if span is not None and span.is_recording():
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, str(value))
    except Exception as e:
        logger.debug("Failed to set span attributes: %s", e)


def get_test_spans() -> list[ReadableSpan]:
    """Spans captured by the in-memory exporter (PROMPTVAULT_OTEL_TEST_CAPTURE=1)."""
    if _test_exporter is not None:
        return list(_test_exporter.get_finished_spans())
    return []


def reset_tracing() -> None:
    """Clear captured spans and allow reconfiguration (for testing).

    The global TracerProvider cannot be replaced once set, so the test
    exporter itself is kept.
    """
    global _is_configured

    if _test_exporter is not None:
        _test_exporter.clear()
    _is_configured = False
