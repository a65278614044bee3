"""
Observability module for tracing registry submissions.
"""

from .tracing import get_tracer, configure_tracing, is_tracing_enabled

__all__ = [
    "get_tracer",
    "configure_tracing",
    "is_tracing_enabled",
]
