"""PromptVault observability: OpenTelemetry tracing baseline."""

from promptvault.observability.tracing import (
    TracingConfigError,
    configure_tracing,
    instrument_fastapi,
    set_span_attributes,
)

__all__ = [
    "TracingConfigError",
    "configure_tracing",
    "instrument_fastapi",
    "set_span_attributes",
]
