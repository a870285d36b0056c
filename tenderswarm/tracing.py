"""
OpenTelemetry tracing — tracing.py
==================================
TracingConfig, configure_tracing(), get_tracer() and the span helpers used by
the orchestrator (one span per phase) and the Thinker (one span per model
call).

Until configure_tracing(enabled=True) is called, the OpenTelemetry API's
default no-op tracer is used.

Usage:
    from tenderswarm.tracing import configure_tracing, TracingConfig
    configure_tracing(TracingConfig(enabled=True))
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

logger = logging.getLogger("tenderswarm.tracing")

# ── Module-level singletons (reset between tests) ──────────────────────────────
_tracer = None
_provider = None


@dataclass
class TracingConfig:
    enabled: bool = False
    service_name: str = "tenderswarm"
    sample_rate: float = 1.0


def configure_tracing(cfg: TracingConfig) -> None:
    """Initialise the tracer. Safe to call multiple times."""
    global _tracer, _provider

    if not cfg.enabled:
        _tracer = trace.get_tracer("tenderswarm")
        return

    resource = Resource.create({"service.name": cfg.service_name})
    provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(cfg.sample_rate))
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    _provider = provider
    _tracer = provider.get_tracer(cfg.service_name)
    logger.info("OTEL tracing → console")


def get_tracer():
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("tenderswarm")
    return _tracer


@contextmanager
def traced_phase(run_id: str, phase: str) -> Iterator:
    """Span for one pipeline phase of a run."""
    with get_tracer().start_as_current_span(f"phase:{phase}") as span:
        span.set_attribute("swarm.run_id", run_id)
        span.set_attribute("swarm.phase", phase)
        yield span


@contextmanager
def traced_llm_call(agent: str, model: str, call_type: str) -> Iterator:
    """Span for a single generation request."""
    with get_tracer().start_as_current_span(f"llm_call:{call_type}") as span:
        span.set_attribute("llm.agent", agent)
        span.set_attribute("llm.model", model)
        span.set_attribute("llm.call_type", call_type)
        yield span
