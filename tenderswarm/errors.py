"""
Exception taxonomy for the swarm pipeline.

Only BudgetExceededError (before any task exists), SwarmCancelledError and
unclassified exceptions are allowed to reach the orchestrator. Generation and
payment failures are handled inside the stage that raised them.
"""
from __future__ import annotations


class SwarmError(Exception):
    """Base class for all pipeline errors."""


class BudgetExceededError(SwarmError):
    """Raised when a pre-flight affordability check fails."""

    def __init__(self, message: str, estimated_cost: float = 0.0,
                 current_spend: float = 0.0, limit: float = 0.0) -> None:
        super().__init__(message)
        self.estimated_cost = estimated_cost
        self.current_spend = current_spend
        self.limit = limit


class GenerationError(SwarmError):
    """The generation collaborator failed (timeout, provider error, empty output)."""


class StructuredOutputError(GenerationError):
    """The collaborator answered, but not with a schema-conforming object."""


class PaymentError(SwarmError):
    """The payment collaborator rejected or failed a call."""


class SwarmCancelledError(SwarmError):
    """The run observed its cancellation signal."""
