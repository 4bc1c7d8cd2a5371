"""Observability utilities for the chat agent.

Vendor-neutral tracing: the @observe decorator creates OpenTelemetry spans
when OpenTelemetry is installed and configured, and is a no-op otherwise.
"""

from .observe import observe, record_result, span_for

__all__ = ["observe", "record_result", "span_for"]
