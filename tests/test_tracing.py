"""Tests for tenderswarm/tracing.py — OTEL span instrumentation."""
from __future__ import annotations

import asyncio
import random

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

import tenderswarm.tracing as t
from conftest import FakeClient
from tenderswarm.engine import SwarmOrchestrator
from tenderswarm.models import ClientBrief
from tenderswarm.tracing import (
    TracingConfig,
    configure_tracing,
    get_tracer,
    traced_llm_call,
    traced_phase,
)


@pytest.fixture(autouse=True)
def reset_tracing():
    """Reset global tracer state between tests."""
    t._tracer = None
    t._provider = None
    yield
    t._tracer = None
    t._provider = None


@pytest.fixture
def span_exporter():
    """Installs an InMemorySpanExporter-backed tracer and returns the exporter."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    t._provider = provider
    t._tracer = provider.get_tracer("test")
    return exporter


def test_tracing_config_defaults():
    cfg = TracingConfig()
    assert cfg.enabled is False
    assert cfg.service_name == "tenderswarm"
    assert cfg.sample_rate == 1.0


def test_disabled_tracing_produces_no_exception():
    configure_tracing(TracingConfig(enabled=False))
    with traced_phase("swarm-1", "decomposing"):
        with traced_llm_call("Project Manager", "grok-3-fast", "structured"):
            pass
    assert get_tracer() is not None
    assert t._provider is None


def test_enabled_tracing_installs_provider():
    configure_tracing(TracingConfig(enabled=True, service_name="swarm-test"))
    assert isinstance(t._provider, TracerProvider)
    assert get_tracer() is t._tracer


def test_phase_span_attributes(span_exporter):
    with traced_phase("swarm-7", "tendering"):
        pass
    span, = span_exporter.get_finished_spans()
    assert span.name == "phase:tendering"
    assert span.attributes["swarm.run_id"] == "swarm-7"
    assert span.attributes["swarm.phase"] == "tendering"


def test_llm_call_nests_under_phase(span_exporter):
    with traced_phase("swarm-7", "generating") as phase:
        with traced_llm_call("Content Generator", "grok-3", "text") as call:
            call.set_attribute("llm.tokens_out", 800)
    call_span, phase_span = span_exporter.get_finished_spans()
    assert call_span.name == "llm_call:text"
    assert call_span.attributes["llm.agent"] == "Content Generator"
    assert call_span.attributes["llm.model"] == "grok-3"
    assert call_span.attributes["llm.tokens_out"] == 800
    assert call_span.parent.span_id == phase_span.context.span_id
    assert phase.get_span_context().span_id == phase_span.context.span_id


def test_exception_is_recorded_and_reraised(span_exporter):
    with pytest.raises(RuntimeError):
        with traced_phase("swarm-7", "assembling"):
            raise RuntimeError("boom")
    span, = span_exporter.get_finished_spans()
    assert span.status.is_ok is False
    assert any(e.name == "exception" for e in span.events)


def test_swarm_run_emits_one_span_per_phase(span_exporter):
    orch = SwarmOrchestrator(FakeClient(), rng=random.Random(5))
    asyncio.run(orch.run(ClientBrief("Coffee brand launch", 1.0), on_event=lambda e: None,
                         demo_mode=True))
    names = [s.name for s in span_exporter.get_finished_spans()]
    phases = [n for n in names if n.startswith("phase:")]
    assert phases == [
        "phase:initializing", "phase:decomposing", "phase:tendering", "phase:generating",
        "phase:evaluating", "phase:assembling", "phase:complete",
    ]
    assert names.count("llm_call:text") == 4
    assert names.count("llm_call:structured") == 5
