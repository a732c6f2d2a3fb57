"""Shared fixtures: an in-memory capability that never touches the network."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from agentsim.llm.schema import Schema, create_schema
from agentsim.llm.usage import UsageStats


class FakeCapability:
    """Scriptable stand-in for a litellm-backed capability.

    ``responder(system, attributes)`` returns the change set (a dict, or a
    raw string sent back verbatim). ``fail_when(attributes)`` makes the call
    raise ``ConnectionError`` for matching agents.
    """

    def __init__(
        self,
        responder: Callable[[str, dict[str, Any]], Any] | None = None,
        *,
        fail_when: Callable[[dict[str, Any]], bool] | None = None,
        reasoning: str = "it seemed right",
        latency: float = 0.0,
        tokens: tuple[int, int] = (10, 5),
        cost: float = 0.001,
    ) -> None:
        self._responder = responder or (lambda system, attrs: {"touched_by": system})
        self._fail_when = fail_when
        self._reasoning = reasoning
        self._latency = latency
        self._tokens = tokens
        self._cost = cost
        self._usage = UsageStats()
        self.calls: list[dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def prompt(
        self,
        system: str,
        content: str,
        instruction: str,
        schema: Schema | None = None,
    ) -> str:
        attributes = json.loads(content)
        self.calls.append(
            {
                "system": system,
                "attributes": attributes,
                "instruction": instruction,
                "schema": schema,
            }
        )
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._latency:
                await asyncio.sleep(self._latency)
            else:
                await asyncio.sleep(0)
            if self._fail_when and self._fail_when(attributes):
                raise ConnectionError("capability unavailable")
            result = self._responder(system, attributes)
        finally:
            self.in_flight -= 1

        self._usage.record(*self._tokens, self._cost)
        return result if isinstance(result, str) else json.dumps(result)

    async def prompt_thinking(
        self,
        system: str,
        content: str,
        instruction: str,
        schema: Schema | None = None,
    ) -> tuple[str, str]:
        payload = await self.prompt(system, content, instruction, schema)
        return payload, self._reasoning

    def create_schema(self, sample: dict[str, Any]) -> Schema:
        return create_schema(sample)

    def usage_stats(self) -> UsageStats:
        return self._usage

    def reset_usage_stats(self) -> None:
        self._usage = UsageStats()


@pytest.fixture
def fake_capability() -> type[FakeCapability]:
    """The FakeCapability class, for tests that need several instances."""
    return FakeCapability


@pytest.fixture
def capability() -> FakeCapability:
    return FakeCapability()
