"""
Generation clients — one async interface over xAI, OpenAI, Anthropic, Google
============================================================================
Pipeline stages only ever see GenerationClient. Each provider SDK has its own
idiom; UnifiedClient normalizes them behind generate_text /
generate_structured / generate_image so provider-specific logic never leaks
into the stages.

Model identifiers are gateway-style ("xai/grok-3-fast"); the prefix selects
the SDK and _NATIVE_MODELS maps to the provider's own model name.

Usage fields may be absent on any result. Callers fall back to a len/4
token estimate.
"""
from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import GenerationError, StructuredOutputError
from .models import Model, get_provider

logger = logging.getLogger("tenderswarm.api_clients")

TSchema = TypeVar("TSchema", bound=BaseModel)

XAI_BASE_URL = "https://api.x.ai/v1"

_NATIVE_MODELS: dict[str, str] = {
    Model.GROK_3_FAST.value: "grok-3-fast",
    Model.GROK_3.value: "grok-3",
    Model.GPT_4O_MINI.value: "gpt-4o-mini",
    Model.GPT_4O.value: "gpt-4o",
    Model.GPT_4_TURBO.value: "gpt-4-turbo",
    Model.O1.value: "o1",
    Model.CLAUDE_SONNET.value: "claude-3-5-sonnet-latest",
    Model.CLAUDE_OPUS.value: "claude-opus-4-20250514",
    Model.GEMINI_IMAGE.value: "gemini-3-pro-image-preview",
}


def native_model_name(model: str) -> str:
    value = model.value if isinstance(model, Model) else str(model)
    return _NATIVE_MODELS.get(value, value.split("/", 1)[-1])


# ─────────────────────────────────────────────
# Request / result types
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class TextRequest:
    model: str
    system_prompt: str
    prompt: str
    max_output_tokens: int
    temperature: float = 0.7


@dataclass(frozen=True)
class Usage:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


@dataclass(frozen=True)
class TextResult:
    text: str
    usage: Usage = field(default_factory=Usage)
    latency_ms: float = 0.0


@dataclass(frozen=True)
class StructuredResult:
    object: BaseModel
    usage: Usage = field(default_factory=Usage)


@dataclass(frozen=True)
class ImageResult:
    base64_data: str
    mime_type: str = "image/png"


class GenerationClient(ABC):
    """The only way pipeline stages reach a language model."""

    @abstractmethod
    async def generate_text(self, request: TextRequest) -> TextResult:
        ...

    @abstractmethod
    async def generate_structured(self, request: TextRequest,
                                  schema: type[TSchema]) -> StructuredResult:
        ...

    async def generate_image(self, prompt: str,
                             model: str = Model.GEMINI_IMAGE.value) -> Optional[ImageResult]:
        """Return None when the provider produced no image."""
        return None


# ─────────────────────────────────────────────
# Structured-output helpers
# ─────────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json(text: str) -> dict:
    """
    Pull the first JSON object out of a model reply. Handles markdown fences
    and chatter before/after the object.
    """
    candidate = text.strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end <= start:
        raise StructuredOutputError("No JSON object found in model output")
    try:
        data = json.loads(candidate[start:end + 1])
    except json.JSONDecodeError as e:
        raise StructuredOutputError(f"Malformed JSON in model output: {e}") from e
    if not isinstance(data, dict):
        raise StructuredOutputError("Top-level JSON value is not an object")
    return data


def structured_prompt(prompt: str, schema: type[BaseModel]) -> str:
    return (
        f"{prompt}\n\n"
        "Respond with ONLY a JSON object (no prose, no markdown fences) that "
        "validates against this JSON schema:\n"
        f"{json.dumps(schema.model_json_schema(), indent=2)}"
    )


def parse_structured(text: str, schema: type[TSchema]) -> TSchema:
    data = extract_json(text)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise StructuredOutputError(
            f"Output does not match {schema.__name__}: {e.error_count()} error(s)"
        ) from e


# ─────────────────────────────────────────────
# UnifiedClient
# ─────────────────────────────────────────────

class UnifiedClient(GenerationClient):
    """
    Async client with:
    - Timeout enforcement per call
    - Retry with exponential backoff on rate limits
    - Concurrency limiting
    """

    def __init__(self, timeout: float = 60.0, retries: int = 2,
                 max_concurrency: int = 3) -> None:
        self.timeout = timeout
        self.retries = retries
        self.semaphore = asyncio.Semaphore(max_concurrency)
        self._clients: dict[str, object] = {}
        self._init_clients()

    def _init_clients(self) -> None:
        """Missing keys → provider unavailable."""
        from dotenv import load_dotenv
        from openai import AsyncOpenAI
        from anthropic import AsyncAnthropic
        from google import genai

        load_dotenv()

        if os.environ.get("XAI_API_KEY"):
            self._clients["xai"] = AsyncOpenAI(
                api_key=os.environ["XAI_API_KEY"], base_url=XAI_BASE_URL,
            )
            logger.info("xAI client initialized")
        if os.environ.get("OPENAI_API_KEY"):
            self._clients["openai"] = AsyncOpenAI()
            logger.info("OpenAI client initialized")
        if os.environ.get("ANTHROPIC_API_KEY"):
            self._clients["anthropic"] = AsyncAnthropic()
            logger.info("Anthropic client initialized")
        google_key = os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY")
        if google_key:
            self._clients["google"] = genai.Client(api_key=google_key)
            logger.info("Google GenAI client initialized")

    def is_available(self, model: str) -> bool:
        return get_provider(model) in self._clients

    def available_providers(self) -> list[str]:
        return sorted(self._clients)

    # ── public interface ────────────────────────────────────────────────────

    async def generate_text(self, request: TextRequest) -> TextResult:
        async with self.semaphore:
            return await self._call_with_retry(request)

    async def generate_structured(self, request: TextRequest,
                                  schema: type[TSchema]) -> StructuredResult:
        json_request = TextRequest(
            model=request.model,
            system_prompt=request.system_prompt,
            prompt=structured_prompt(request.prompt, schema),
            max_output_tokens=request.max_output_tokens,
            temperature=request.temperature,
        )
        result = await self.generate_text(json_request)
        return StructuredResult(object=parse_structured(result.text, schema),
                                usage=result.usage)

    async def generate_image(self, prompt: str,
                             model: str = Model.GEMINI_IMAGE.value) -> Optional[ImageResult]:
        if get_provider(model) != "google" or "google" not in self._clients:
            raise GenerationError(f"No image-capable client configured for {model}")
        client = self._clients["google"]
        from google.genai import types

        config = types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"])
        loop = asyncio.get_running_loop()
        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: client.models.generate_content(
                        model=native_model_name(model), contents=prompt, config=config,
                    ),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise GenerationError(f"Image generation timed out after {self.timeout}s") from e

        for candidate in response.candidates or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    return ImageResult(
                        base64_data=base64.b64encode(inline.data).decode("ascii"),
                        mime_type=inline.mime_type or "image/png",
                    )
        return None

    # ── retry / dispatch ────────────────────────────────────────────────────

    async def _call_with_retry(self, request: TextRequest) -> TextResult:
        last_error: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            try:
                t0 = time.monotonic()
                result = await asyncio.wait_for(self._dispatch(request), timeout=self.timeout)
                if not result.text.strip():
                    raise GenerationError(f"{request.model} returned an empty response")
                return TextResult(text=result.text, usage=result.usage,
                                  latency_ms=(time.monotonic() - t0) * 1000)
            except asyncio.TimeoutError:
                logger.warning(f"Timeout calling {request.model} (attempt {attempt + 1})")
                last_error = GenerationError(f"{request.model} timed out after {self.timeout}s")
            except GenerationError as e:
                logger.warning(f"{e} (attempt {attempt + 1})")
                last_error = e
            except Exception as e:
                logger.warning(f"Error calling {request.model}: {e} (attempt {attempt + 1})")
                last_error = GenerationError(f"{request.model} failed: {e}")
                if "rate_limit" in str(e).lower() or "429" in str(e):
                    await asyncio.sleep(2 ** attempt)
                    continue
        raise last_error or GenerationError(f"Failed to call {request.model}")

    async def _dispatch(self, request: TextRequest) -> TextResult:
        provider = get_provider(request.model)
        if provider not in self._clients:
            raise GenerationError(f"No client configured for provider {provider!r}")
        if provider in ("xai", "openai"):
            return await self._call_openai_compatible(provider, request)
        if provider == "anthropic":
            return await self._call_anthropic(request)
        if provider == "google":
            return await self._call_google(request)
        raise GenerationError(f"Unknown provider for {request.model}")

    async def _call_openai_compatible(self, provider: str, request: TextRequest) -> TextResult:
        client = self._clients[provider]
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        response = await client.chat.completions.create(
            model=native_model_name(request.model),
            messages=messages,
            max_tokens=request.max_output_tokens,
            temperature=request.temperature,
        )
        choice = response.choices[0]
        usage = response.usage
        return TextResult(
            text=choice.message.content or "",
            usage=Usage(
                prompt_tokens=usage.prompt_tokens if usage else None,
                completion_tokens=usage.completion_tokens if usage else None,
                total_tokens=usage.total_tokens if usage else None,
            ),
        )

    async def _call_anthropic(self, request: TextRequest) -> TextResult:
        client = self._clients["anthropic"]
        kwargs = {
            "model": native_model_name(request.model),
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt

        response = await client.messages.create(**kwargs)
        text = "".join(block.text for block in response.content if hasattr(block, "text"))
        usage = response.usage
        return TextResult(
            text=text,
            usage=Usage(
                prompt_tokens=usage.input_tokens,
                completion_tokens=usage.output_tokens,
                total_tokens=usage.input_tokens + usage.output_tokens,
            ),
        )

    async def _call_google(self, request: TextRequest) -> TextResult:
        client = self._clients["google"]
        from google.genai import types

        config = types.GenerateContentConfig(
            max_output_tokens=request.max_output_tokens,
            temperature=request.temperature,
        )
        if request.system_prompt:
            config.system_instruction = request.system_prompt

        # google-genai sync API; run in executor
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: client.models.generate_content(
                model=native_model_name(request.model),
                contents=request.prompt,
                config=config,
            ),
        )
        meta = getattr(response, "usage_metadata", None)
        return TextResult(
            text=response.text or "",
            usage=Usage(
                prompt_tokens=getattr(meta, "prompt_token_count", None) if meta else None,
                completion_tokens=getattr(meta, "candidates_token_count", None) if meta else None,
                total_tokens=getattr(meta, "total_token_count", None) if meta else None,
            ),
        )
