"""
Tests for observability/tracing.py - tracer setup.
"""
from opentelemetry import trace


class TestTracing:

    def test_disabled_tracing_keeps_no_op_provider(self):
        from observability.tracing import TracingConfig, setup_tracing, shutdown_tracing

        shutdown_tracing()
        try:
            assert setup_tracing(TracingConfig(enabled=False)) is None
            assert setup_tracing(TracingConfig(enabled=True)) is None
        finally:
            shutdown_tracing()

    def test_get_tracer_spans_are_safe_without_setup(self):
        from observability.tracing import get_tracer

        with get_tracer("shop.test").start_as_current_span("unit_of_work.commit") as span:
            span.set_attribute("shop.transaction_tag", "t-1")

        assert isinstance(span, trace.Span)
