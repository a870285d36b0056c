"""Coordinator — phase announcements and run-level status lines."""
from __future__ import annotations

from .agent import Thinker
from .models import AgentMessage, MessageType, SwarmPhase

COORDINATOR = "Coordinator"

SYSTEM_PROMPT = """You are the Coordinator of TenderSwarm, an autonomous AI agency.
You oversee all agents and ensure smooth execution of client projects.
You communicate status updates clearly and professionally.
You never make up information - only report what has actually happened."""

_PHASE_MESSAGES: dict[SwarmPhase, str] = {
    SwarmPhase.IDLE: "Standing by for new projects.",
    SwarmPhase.INITIALIZING: "Initializing swarm agents...",
    SwarmPhase.DECOMPOSING: "Project Manager is analyzing the client brief.",
    SwarmPhase.TENDERING: "Tender Poster is creating tenders.",
    SwarmPhase.GENERATING: "Providers are producing deliverables.",
    SwarmPhase.EVALUATING: "Evaluator is reviewing deliverables.",
    SwarmPhase.ASSEMBLING: "Assembler is compiling final output.",
    SwarmPhase.COMPLETE: "Project completed successfully!",
    SwarmPhase.ERROR: "An error occurred during execution.",
}


class Coordinator:
    def __init__(self, thinker: Thinker) -> None:
        self.thinker = thinker

    def announce(self, phase: SwarmPhase, details: str = "") -> AgentMessage:
        base = _PHASE_MESSAGES.get(phase, "Processing...")
        text = f"{base} {details}" if details else base
        kind = MessageType.ERROR if phase is SwarmPhase.ERROR else MessageType.INFO
        return self.thinker.message(text, kind, {"phase": phase.value})

    def say(self, text: str, type: MessageType = MessageType.INFO, **metadata) -> AgentMessage:
        return self.thinker.message(text, type, metadata)
