"""Configuration — Pydantic models for agentsim settings."""

from __future__ import annotations

import os
import uuid
from typing import Any

from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    """Reasoning capability configuration.

    Model names use litellm's provider-prefix format:
        "gemini/gemini-1.5-flash"
        "anthropic/claude-sonnet-4-5-20250929"
        "openai/gpt-4o"

    API keys are read from env vars automatically by litellm
    (GEMINI_API_KEY, ANTHROPIC_API_KEY, OPENAI_API_KEY).
    """

    model: str = Field(default="gemini/gemini-1.5-flash")
    fast_model: str | None = Field(
        default=None,
        description="Model used for short reasoning statements; defaults to `model`",
    )
    temperature: float | None = Field(default=0.1)
    top_p: float | None = Field(default=1.0)
    frequency_penalty: float | None = Field(default=0.5)
    max_tokens: int | None = Field(default=None)
    reasoning_max_tokens: int = Field(
        default=60,
        description="Output token cap for the chain-of-thought justification call",
    )
    input_cost_per_mtok: float = Field(
        default=0.15, description="USD per million input tokens"
    )
    output_cost_per_mtok: float = Field(
        default=0.60, description="USD per million output tokens"
    )


class SimulationConfig(BaseModel):
    """Settings for one orchestrated simulation."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    description: str = Field(default="Unnamed Simulation")
    delay: float = Field(
        default=1.5, ge=0, description="Seconds to pause between steps"
    )
    max_concurrency: int | None = Field(
        default=5,
        description="Max in-flight node executions per step (None or <= 0: unbounded)",
    )


class ProcessConfig(BaseModel):
    """Per-process execution policy applied to every node call."""

    retries: int = Field(default=3, ge=0, description="Extra attempts after a failure")
    timeout: float | None = Field(
        default=10.0, gt=0, description="Seconds allowed per attempt (None: no deadline)"
    )
    retry_wait: float = Field(
        default=1.0, ge=0, description="Multiplier for exponential backoff, in seconds"
    )


class AgentsimConfig(BaseModel):
    """Top-level agentsim configuration."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    process: ProcessConfig = Field(default_factory=ProcessConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> AgentsimConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            GEMINI_API_KEY            - Gemini API key (read by litellm automatically)
            OPENAI_API_KEY            - OpenAI API key (read by litellm automatically)
            AGENTSIM_MODEL            - Override primary model (litellm format)
            AGENTSIM_FAST_MODEL       - Override the reasoning-statement model
            AGENTSIM_DELAY            - Seconds between steps
            AGENTSIM_MAX_CONCURRENCY  - Max concurrent node executions per step
        """
        from dotenv import load_dotenv

        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            with open(config_path) as f:
                config_data = json.load(f)

        llm = config_data.get("llm", {})
        simulation = config_data.get("simulation", {})

        env_model = os.environ.get("AGENTSIM_MODEL")
        if env_model:
            llm["model"] = env_model

        env_fast_model = os.environ.get("AGENTSIM_FAST_MODEL")
        if env_fast_model:
            llm["fast_model"] = env_fast_model

        env_delay = os.environ.get("AGENTSIM_DELAY")
        if env_delay:
            simulation["delay"] = float(env_delay)

        env_concurrency = os.environ.get("AGENTSIM_MAX_CONCURRENCY")
        if env_concurrency:
            simulation["max_concurrency"] = int(env_concurrency)

        if llm:
            config_data["llm"] = llm
        if simulation:
            config_data["simulation"] = simulation

        return cls.model_validate(config_data)
