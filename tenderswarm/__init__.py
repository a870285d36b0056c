"""
TenderSwarm
===========
Autonomous agent marketplace: a client brief and an MNEE budget go in; a
swarm of agents decomposes the brief into priced micro-tasks, posts them as
tenders, generates each deliverable, evaluates and pays for it, and
assembles the accepted work into one final document.

Basic usage:
    from tenderswarm import SwarmOrchestrator, ClientBrief, UnifiedClient

    orch = SwarmOrchestrator(UnifiedClient())
    summary = asyncio.run(orch.run(
        ClientBrief(text="Launch plan for a specialty coffee brand", budget=0.8),
        demo_mode=True,
    ))

Streaming usage:
    async for event in orch.run_streaming(brief, demo_mode=True):
        print(event_to_frame(event))
"""

from .models import (
    ClientBrief, MicroTask, Payment, SwarmPhase, SwarmSummary, TaskCategory, TaskStatus,
)
from .api_clients import GenerationClient, UnifiedClient
from .config import RunConfig, Settings
from .cost import CostTracker
from .engine import SwarmOrchestrator
from .errors import (
    BudgetExceededError, GenerationError, PaymentError, StructuredOutputError,
    SwarmCancelledError, SwarmError,
)
from .payments import PaymentGateway, SimulatedPaymentGateway
from .state import ResultStore
from .streaming import SwarmEvent, encode_frame, event_to_frame
from .tiers import TierConfig, determine_tier

__all__ = [
    "SwarmOrchestrator", "ClientBrief", "MicroTask", "Payment", "SwarmPhase",
    "SwarmSummary", "TaskCategory", "TaskStatus",
    "GenerationClient", "UnifiedClient", "RunConfig", "Settings", "CostTracker",
    "BudgetExceededError", "GenerationError", "PaymentError", "StructuredOutputError",
    "SwarmCancelledError", "SwarmError",
    "PaymentGateway", "SimulatedPaymentGateway", "ResultStore",
    "SwarmEvent", "encode_frame", "event_to_frame",
    "TierConfig", "determine_tier",
]
