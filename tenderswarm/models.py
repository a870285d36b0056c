"""
TenderSwarm — Core Models & Types
=================================
All data structures, enums and pricing tables shared by the pipeline stages.

Everything that crosses a stage boundary is a typed dataclass so a typo in a
category or status name fails loudly instead of silently mis-routing a task.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def estimate_tokens(text: str) -> int:
    """Rough token estimate used whenever a provider omits usage data."""
    return len(text or "") // 4


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class TaskCategory(str, Enum):
    RESEARCH = "research"
    DESIGN = "design"
    COPYWRITING = "copywriting"
    FINANCIAL_MODELING = "financial-modeling"
    STRATEGY = "strategy"
    DEVELOPMENT = "development"
    MARKETING = "marketing"


class TaskStatus(str, Enum):
    PENDING = "pending"
    POSTED = "posted"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Capability(str, Enum):
    TEXT = "text"
    CODE = "code"
    VISION = "vision"
    DATA_ANALYSIS = "data-analysis"
    CREATIVE = "creative"
    TECHNICAL = "technical"
    FINANCIAL = "financial"


class MessageType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    THINKING = "thinking"
    ACTION = "action"


class PaymentType(str, Enum):
    PROVIDER = "provider"
    REFUND = "refund"


class SwarmPhase(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    DECOMPOSING = "decomposing"
    TENDERING = "tendering"
    GENERATING = "generating"
    EVALUATING = "evaluating"
    ASSEMBLING = "assembling"
    COMPLETE = "complete"
    ERROR = "error"


class Model(str, Enum):
    GROK_3_FAST = "xai/grok-3-fast"
    GROK_3 = "xai/grok-3"
    GPT_4O_MINI = "openai/gpt-4o-mini"
    GPT_4O = "openai/gpt-4o"
    GPT_4_TURBO = "openai/gpt-4-turbo"
    O1 = "openai/o1"
    CLAUDE_SONNET = "anthropic/claude-3.5-sonnet"
    CLAUDE_OPUS = "anthropic/claude-opus"
    GEMINI_IMAGE = "google/gemini-3-pro-image"


def get_provider(model: str) -> str:
    """Provider prefix of a gateway-style model identifier ("xai/grok-3" → "xai")."""
    value = model.value if isinstance(model, Model) else str(model)
    if "/" not in value:
        return "unknown"
    return value.split("/", 1)[0]


def resolve_model(model: str) -> Optional[Model]:
    """Return the Model for an identifier, or None when it is not priced."""
    try:
        return Model(model)
    except ValueError:
        return None


# ─────────────────────────────────────────────
# Pricing table (per 1K tokens, MNEE)
# ─────────────────────────────────────────────

MODEL_PRICING: dict[Model, dict[str, float]] = {
    Model.GROK_3_FAST:   {"input": 0.0001,  "output": 0.0003},
    Model.GROK_3:        {"input": 0.0005,  "output": 0.0015},
    Model.GPT_4O_MINI:   {"input": 0.00015, "output": 0.0006},
    Model.GPT_4O:        {"input": 0.0025,  "output": 0.01},
    Model.GPT_4_TURBO:   {"input": 0.01,    "output": 0.03},
    Model.O1:            {"input": 0.015,   "output": 0.06},
    Model.CLAUDE_SONNET: {"input": 0.003,   "output": 0.015},
    Model.CLAUDE_OPUS:   {"input": 0.015,   "output": 0.075},
    Model.GEMINI_IMAGE:  {"input": 0.0005,  "output": 0.0015, "image": 0.04},
}

IMAGE_COST_PER_IMAGE: float = MODEL_PRICING[Model.GEMINI_IMAGE]["image"]


def price_tokens(model: Model, input_tokens: float, output_tokens: float) -> float:
    rates = MODEL_PRICING[model]
    return (input_tokens / 1000) * rates["input"] + (output_tokens / 1000) * rates["output"]


# ─────────────────────────────────────────────
# Data classes
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class ClientBrief:
    text: str
    budget: float
    id: str = field(default_factory=lambda: new_id("brief"))
    created_at: datetime = field(default_factory=utcnow)
    payment_tx_hash: Optional[str] = None


@dataclass
class MicroTask:
    id: str
    description: str
    category: TaskCategory
    reward: float
    estimated_time: int = 120
    required_capabilities: list[Capability] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    tender_id: Optional[int] = None
    provider: Optional[str] = None
    provider_name: Optional[str] = None
    deliverable_ref: Optional[str] = None
    result_preview: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "category": self.category.value,
            "reward": self.reward,
            "estimatedTime": self.estimated_time,
            "requiredCapabilities": [c.value for c in self.required_capabilities],
            "status": self.status.value,
            "tenderId": self.tender_id,
            "provider": self.provider,
            "providerName": self.provider_name,
            "deliverableRef": self.deliverable_ref,
            "resultPreview": self.result_preview,
        }


@dataclass(frozen=True)
class GeneratedImage:
    id: str
    task_id: str
    category: str
    prompt: str
    base64_data: str
    mime_type: str = "image/png"
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "category": self.category,
            "prompt": self.prompt,
            "base64Data": self.base64_data,
            "mimeType": self.mime_type,
        }


@dataclass(frozen=True)
class GeneratedVideo:
    id: str
    task_id: str
    category: str
    prompt: str
    video_url: str = ""
    thumbnail_url: Optional[str] = None
    duration: int = 15

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "category": self.category,
            "prompt": self.prompt,
            "videoUrl": self.video_url,
            "thumbnailUrl": self.thumbnail_url,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class GeneratedDeliverable:
    task_id: str
    task_description: str
    category: TaskCategory
    provider: str
    provider_name: str
    content: str
    tokens_used: int
    image: Optional[GeneratedImage] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "title": self.task_description,
            "category": self.category.value,
            "provider": self.provider,
            "providerName": self.provider_name,
            "content": self.content,
            "tokensUsed": self.tokens_used,
            "image": self.image.to_dict() if self.image else None,
        }


@dataclass(frozen=True)
class CostEntry:
    agent: str
    model: Model
    input_tokens: int
    output_tokens: int
    cost: float
    description: str
    id: str = field(default_factory=lambda: new_id("cost"))
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ImageCostEntry:
    model: str
    images_generated: int
    cost_per_image: float
    total_cost: float
    id: str = field(default_factory=lambda: new_id("img-cost"))
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Payment:
    tender_id: Optional[int]
    amount: float
    recipient: str
    tx_hash: str
    payment_type: PaymentType = PaymentType.PROVIDER
    provider_name: Optional[str] = None
    task_id: Optional[str] = None
    simulated: bool = False
    id: str = field(default_factory=lambda: new_id("pay"))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenderId": self.tender_id,
            "taskId": self.task_id,
            "amount": self.amount,
            "recipient": self.recipient,
            "providerName": self.provider_name,
            "txHash": self.tx_hash,
            "paymentType": self.payment_type.value,
            "simulated": self.simulated,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class AgentMessage:
    agent: str
    message: str
    type: MessageType = MessageType.INFO
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("msg"))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agent": self.agent,
            "message": self.message,
            "type": self.type.value,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AgentWorkMetrics:
    tokens_used: int = 0
    tasks_processed: int = 0
    ai_calls: int = 0


@dataclass(frozen=True)
class AgentPayment:
    agent: str
    amount: float
    reason: str
    tokens_used: int = 0
    tasks_processed: int = 0
    id: str = field(default_factory=lambda: new_id("agent-pay"))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agent": self.agent,
            "amount": self.amount,
            "reason": self.reason,
            "tokensUsed": self.tokens_used,
            "tasksProcessed": self.tasks_processed,
        }


@dataclass(frozen=True)
class CostBreakdown:
    ai_costs: float
    platform_fee: float
    total_spent: float
    original_budget: float
    refund_amount: float
    utilization_rate: float

    def to_dict(self) -> dict:
        return {
            "aiCosts": self.ai_costs,
            "platformFee": self.platform_fee,
            "totalSpent": self.total_spent,
            "originalBudget": self.original_budget,
            "refundAmount": self.refund_amount,
            "utilizationRate": self.utilization_rate,
        }


@dataclass
class SwarmSummary:
    """Terminal aggregate of one successful run."""
    run_id: str
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    rejected_tasks: int
    total_spent: float
    original_budget: float
    refund_amount: float
    tier: str
    cost_breakdown: dict[str, float]
    providers_used: int
    execution_time: float
    agent_payments: list[AgentPayment] = field(default_factory=list)
    provider_payments: list[Payment] = field(default_factory=list)
    final_deliverable: str = ""
    structure: dict[str, Any] = field(default_factory=dict)
    deliverables: list[GeneratedDeliverable] = field(default_factory=list)
    generated_images: list[GeneratedImage] = field(default_factory=list)
    generated_videos: list[GeneratedVideo] = field(default_factory=list)
    terminated_early: bool = False

    def to_dict(self) -> dict:
        return {
            "runId": self.run_id,
            "totalTasks": self.total_tasks,
            "completedTasks": self.completed_tasks,
            "failedTasks": self.failed_tasks,
            "rejectedTasks": self.rejected_tasks,
            "totalSpent": self.total_spent,
            "originalBudget": self.original_budget,
            "refundAmount": self.refund_amount,
            "tier": self.tier,
            "costBreakdown": dict(self.cost_breakdown),
            "providersUsed": self.providers_used,
            "executionTime": self.execution_time,
            "agentPayments": [p.to_dict() for p in self.agent_payments],
            "providerPayments": [p.to_dict() for p in self.provider_payments],
            "finalDeliverable": self.final_deliverable,
            "structure": self.structure,
            "deliverables": [d.to_dict() for d in self.deliverables],
            "generatedImages": [i.to_dict() for i in self.generated_images],
            "generatedVideos": [v.to_dict() for v in self.generated_videos],
            "terminatedEarly": self.terminated_early,
        }
