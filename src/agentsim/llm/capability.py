"""Reasoning capability abstraction — unified via litellm.

A capability turns (instructions, serialized attributes, instruction
message, schema) into a JSON reply. Each handle carries its own usage
counters; there is no process-wide instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from agentsim.config import LLMConfig
from agentsim.llm.schema import Schema, create_schema
from agentsim.llm.usage import UsageStats

if TYPE_CHECKING:
    from litellm import ModelResponse

logger = logging.getLogger(__name__)

REASONING_PROMPT = (
    "In natural language and in character, generate a very short statement "
    "that contextualizes the change made."
)


@runtime_checkable
class Capability(Protocol):
    """Protocol for reasoning capabilities consumed by nodes."""

    async def prompt(
        self,
        system: str,
        content: str,
        instruction: str,
        schema: Schema | None = None,
    ) -> str:
        """Return a JSON payload describing attribute changes."""
        ...

    async def prompt_thinking(
        self,
        system: str,
        content: str,
        instruction: str,
        schema: Schema | None = None,
    ) -> tuple[str, str]:
        """Return (JSON payload, reasoning text)."""
        ...

    def create_schema(self, sample: dict[str, Any]) -> Schema: ...

    def usage_stats(self) -> UsageStats: ...

    def reset_usage_stats(self) -> None: ...


# ---------------------------------------------------------------------------
# litellm capability
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class LiteLLMCapability:
    """Capability backed by litellm.

    litellm handles provider detection from the model string prefix
    (e.g. "gemini/gemini-1.5-flash", "openai/gpt-4o") and reads API keys
    from environment variables automatically.
    """

    _config: LLMConfig
    _generation: dict[str, Any] = field(default_factory=dict)
    _usage: UsageStats = field(default_factory=UsageStats)

    @property
    def config(self) -> LLMConfig:
        return self._config

    def create_schema(self, sample: dict[str, Any]) -> Schema:
        return create_schema(sample)

    async def prompt(
        self,
        system: str,
        content: str,
        instruction: str,
        schema: Schema | None = None,
    ) -> str:
        kwargs = self._completion_kwargs(self._config.model)
        kwargs["messages"] = [
            {"role": "system", "content": system},
            {"role": "user", "content": content},
            {"role": "user", "content": instruction},
        ]
        if schema is not None:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "changes", "schema": schema},
            }
        else:
            kwargs["response_format"] = {"type": "json_object"}

        response = await _acompletion_with_retry(**kwargs)
        self._update_usage(response)
        return _response_text(response)

    async def prompt_thinking(
        self,
        system: str,
        content: str,
        instruction: str,
        schema: Schema | None = None,
    ) -> tuple[str, str]:
        result = await self.prompt(system, content, instruction, schema)
        reasoning = await self._generate_reasoning(
            system, f"You added: {result} to {content}"
        )
        logger.debug("Reasoning for %s: %s", result, reasoning)
        return result, reasoning

    async def _generate_reasoning(self, system: str, content: str) -> str:
        model = self._config.fast_model or self._config.model
        kwargs = self._completion_kwargs(model)
        kwargs["max_tokens"] = self._config.reasoning_max_tokens
        kwargs["messages"] = [
            {"role": "user", "content": f"ROLE: {system}\n\n {content}"},
            {"role": "user", "content": REASONING_PROMPT},
        ]
        response = await _acompletion_with_retry(**kwargs)
        self._update_usage(response)
        return _response_text(response)

    def _completion_kwargs(self, model: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": model}
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        if self._config.top_p is not None:
            kwargs["top_p"] = self._config.top_p
        if self._config.frequency_penalty is not None:
            kwargs["frequency_penalty"] = self._config.frequency_penalty
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens
        kwargs.update(self._generation)
        return kwargs

    # -- runtime adjustments ------------------------------------------------

    def set_primary_model(self, model: str) -> None:
        self._config = self._config.model_copy(update={"model": model})

    def set_utility_model(self, model: str) -> None:
        self._config = self._config.model_copy(update={"fast_model": model})

    def set_generation_config(self, generation: dict[str, Any]) -> None:
        """Extra litellm completion kwargs merged into every call."""
        self._generation = dict(generation)

    def set_pricing(self, input_cost_per_mtok: float, output_cost_per_mtok: float) -> None:
        self._config = self._config.model_copy(
            update={
                "input_cost_per_mtok": input_cost_per_mtok,
                "output_cost_per_mtok": output_cost_per_mtok,
            }
        )

    # -- usage tracking -----------------------------------------------------

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens / 1_000_000 * self._config.input_cost_per_mtok
            + output_tokens / 1_000_000 * self._config.output_cost_per_mtok
        )

    def usage_stats(self) -> UsageStats:
        return self._usage

    def reset_usage_stats(self) -> None:
        self._usage = UsageStats()

    def _update_usage(self, response: ModelResponse) -> None:
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        self._usage.record(
            input_tokens, output_tokens, self.calculate_cost(input_tokens, output_tokens)
        )


@retry(
    retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _acompletion_with_retry(**kwargs: Any) -> ModelResponse:
    """Call litellm.acompletion with retry on transient errors."""
    import litellm

    return await litellm.acompletion(**kwargs)


def _response_text(response: ModelResponse) -> str:
    """Extract the assistant text from a litellm response."""
    choices = getattr(response, "choices", None)
    if not choices:
        return ""
    message = choices[0].message
    return getattr(message, "content", None) or ""


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_capability(
    model: str | None = None,
    config: LLMConfig | None = None,
    **overrides: Any,
) -> LiteLLMCapability:
    """Create a litellm-backed capability.

    Args:
        model: Model name with provider prefix (e.g. "gemini/gemini-1.5-flash").
            Overrides ``config.model`` when given.
        config: Base LLM settings. Defaults to ``LLMConfig()``.
        **overrides: Any other ``LLMConfig`` field.

    Returns:
        A fresh handle with zeroed usage counters.
    """
    base = config or LLMConfig()
    update = dict(overrides)
    if model is not None:
        update["model"] = model
    if update:
        base = base.model_copy(update=update)
    return LiteLLMCapability(_config=base)
