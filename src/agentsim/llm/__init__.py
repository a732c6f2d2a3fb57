"""Capability layer — unified via litellm."""

from agentsim.llm.capability import (
    Capability,
    LiteLLMCapability,
    create_capability,
)
from agentsim.llm.schema import Schema, create_schema, encapsulate_schema, infer_schema
from agentsim.llm.usage import UsageStats

__all__ = [
    "Capability",
    "LiteLLMCapability",
    "create_capability",
    "Schema",
    "create_schema",
    "encapsulate_schema",
    "infer_schema",
    "UsageStats",
]
