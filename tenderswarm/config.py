"""
Configuration — process-wide Settings and the per-run RunConfig
===============================================================
Settings are read once from the environment (after load_dotenv) and cover
everything that is the same for every run in a process: timeouts, pacing,
database path, HTTP binding.

RunConfig is frozen and built once per run from the budget tier, the demo
flag and Settings. Every stage receives the same instance, so demo caps and
model choice cannot drift between stages.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .models import Model
from .tiers import TierConfig, demo_tier_config

ENV_PREFIX = "TENDERSWARM_"

PLATFORM_TREASURY = "0xd4a27D669c8F27BF293b4D15269E0398CDb27aE1"
DEFAULT_RESULTS_PATH = Path.home() / ".tenderswarm" / "results.db"

# Demo-mode caps
DEMO_MODEL = Model.GROK_3_FAST
DEMO_THINK_TOKENS = 500
DEMO_STRUCTURED_TOKENS = 1500
DEMO_CONTENT_TOKENS = 800
DEMO_ASSEMBLY_TOKENS = 4000

LIVE_STRUCTURED_TOKENS = 3000


def _env(name: str, default: str) -> str:
    return os.environ.get(ENV_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    evaluation_mode: str = "llm"          # "llm" | "heuristic"
    generation_timeout: float = 60.0
    generation_retries: int = 2
    tender_delay: float = 0.0
    evaluation_delay: float = 0.0
    results_path: Path = DEFAULT_RESULTS_PATH
    treasury_address: str = PLATFORM_TREASURY
    host: str = "127.0.0.1"
    port: int = 8000
    tracing: bool = False

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        mode = _env("EVALUATION_MODE", "llm").lower()
        if mode not in ("llm", "heuristic"):
            raise ValueError(
                f"{ENV_PREFIX}EVALUATION_MODE must be 'llm' or 'heuristic', got {mode!r}"
            )
        return cls(
            evaluation_mode=mode,
            generation_timeout=float(_env("GENERATION_TIMEOUT", "60")),
            generation_retries=int(_env("GENERATION_RETRIES", "2")),
            tender_delay=float(_env("TENDER_DELAY", "0")),
            evaluation_delay=float(_env("EVALUATION_DELAY", "0")),
            results_path=Path(_env("RESULTS_PATH", str(DEFAULT_RESULTS_PATH))).expanduser(),
            treasury_address=_env("TREASURY_ADDRESS", PLATFORM_TREASURY),
            host=_env("HOST", "127.0.0.1"),
            port=int(_env("PORT", "8000")),
            tracing=_env_bool("TRACING", False),
        )


@dataclass(frozen=True)
class RunConfig:
    """Immutable per-run knobs shared by every stage."""
    demo: bool
    tier: TierConfig
    agent_model: Model
    content_model: Model
    max_tokens_per_task: int
    think_token_cap: Optional[int]
    structured_tokens: int
    content_tokens: int
    assembly_tokens: int
    evaluation_mode: str = "llm"
    tender_delay: float = 0.0
    evaluation_delay: float = 0.0

    @property
    def images_enabled(self) -> bool:
        return self.tier.includes_images and self.tier.max_images > 0

    def cap_think(self, max_tokens: int) -> int:
        if self.think_token_cap is None:
            return max_tokens
        return min(max_tokens, self.think_token_cap)

    @classmethod
    def build(cls, tier: TierConfig, demo: bool = False,
              settings: Optional[Settings] = None) -> "RunConfig":
        settings = settings or Settings()
        if demo:
            tier = demo_tier_config(tier)
            return cls(
                demo=True,
                tier=tier,
                agent_model=DEMO_MODEL,
                content_model=DEMO_MODEL,
                max_tokens_per_task=tier.max_tokens_per_task,
                think_token_cap=DEMO_THINK_TOKENS,
                structured_tokens=DEMO_STRUCTURED_TOKENS,
                content_tokens=DEMO_CONTENT_TOKENS,
                assembly_tokens=DEMO_ASSEMBLY_TOKENS,
                evaluation_mode=settings.evaluation_mode,
                tender_delay=settings.tender_delay,
                evaluation_delay=settings.evaluation_delay,
            )
        return cls(
            demo=False,
            tier=tier,
            agent_model=tier.ai_model,
            content_model=tier.ai_model,
            max_tokens_per_task=tier.max_tokens_per_task,
            think_token_cap=None,
            structured_tokens=LIVE_STRUCTURED_TOKENS,
            content_tokens=tier.max_tokens_per_task,
            assembly_tokens=max(16000, tier.max_tokens_per_task * 4),
            evaluation_mode=settings.evaluation_mode,
            tender_delay=settings.tender_delay,
            evaluation_delay=settings.evaluation_delay,
        )
