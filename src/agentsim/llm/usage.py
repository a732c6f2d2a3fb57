"""Usage accounting for capability calls."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class UsageStats:
    """Cumulative usage of one capability handle (or an aggregate)."""

    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0

    def __add__(self, other: UsageStats) -> UsageStats:
        return UsageStats(
            calls=self.calls + other.calls,
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            estimated_cost=self.estimated_cost + other.estimated_cost,
        )

    def record(self, input_tokens: int, output_tokens: int, cost: float) -> None:
        """Count one call."""
        self.calls += 1
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.estimated_cost += cost
