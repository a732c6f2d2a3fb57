"""Serializable branch predicates over agent attributes."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from agentsim.errors import DefinitionError

_COMPARISONS = {"equals", "not_equals", "gt", "ge", "lt", "le"}
_COMBINATORS = {"all", "any", "not"}
KINDS = {"always", "never", "between", "in", "truthy"} | _COMPARISONS | _COMBINATORS

_MISSING = object()


@dataclass(frozen=True)
class Condition:
    """A predicate that can be written to and read from YAML/JSON.

    Instances are callable with an attribute mapping, so they can be used
    anywhere a plain function is accepted.
    """

    kind: str = "always"
    key: str | None = None
    value: Any = None
    low: float | None = None
    high: float | None = None
    conditions: tuple[Condition, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise DefinitionError(f"Unknown condition kind: {self.kind!r}")

    @classmethod
    def from_raw(cls, raw: Any) -> Condition:
        """Normalise a raw condition into a :class:`Condition`."""
        if raw is None:
            return cls()
        if isinstance(raw, Condition):
            return raw
        if isinstance(raw, bool):
            return cls() if raw else cls(kind="never")
        if isinstance(raw, str):
            text = raw.strip().lower()
            if not text or text in {"always", "true"}:
                return cls()
            if text in {"never", "false"}:
                return cls(kind="never")
            raise DefinitionError(f"Unsupported condition string: {raw!r}")
        if isinstance(raw, Mapping):
            kind = str(raw.get("when", raw.get("kind", "always"))).lower()
            children = raw.get("conditions") or ()
            if kind == "not" and "condition" in raw:
                children = [raw["condition"]]
            return cls(
                kind=kind,
                key=raw.get("key"),
                value=raw.get("value"),
                low=raw.get("low", raw.get("min")),
                high=raw.get("high", raw.get("max")),
                conditions=tuple(cls.from_raw(c) for c in children),
            )
        raise DefinitionError(f"Unsupported condition format: {raw!r}")

    def __call__(self, attributes: Mapping[str, Any]) -> bool:
        return self.evaluate(attributes)

    def evaluate(self, attributes: Mapping[str, Any]) -> bool:
        """Evaluate against an agent's attributes. Missing keys are ``False``."""
        if self.kind == "always":
            return True
        if self.kind == "never":
            return False
        if self.kind == "all":
            return all(c.evaluate(attributes) for c in self.conditions)
        if self.kind == "any":
            return any(c.evaluate(attributes) for c in self.conditions)
        if self.kind == "not":
            return not all(c.evaluate(attributes) for c in self.conditions)

        actual = attributes.get(self.key, _MISSING) if self.key else _MISSING
        if actual is _MISSING:
            return False
        if self.kind == "truthy":
            return bool(actual)
        if self.kind == "equals":
            return actual == self.value
        if self.kind == "not_equals":
            return actual != self.value
        try:
            if self.kind == "in":
                return self.value is not None and actual in self.value
            if self.kind == "between":
                low_ok = self.low is None or actual >= self.low
                high_ok = self.high is None or actual <= self.high
                return bool(low_ok and high_ok)
            if self.kind == "gt":
                return bool(actual > self.value)
            if self.kind == "ge":
                return bool(actual >= self.value)
            if self.kind == "lt":
                return bool(actual < self.value)
            if self.kind == "le":
                return bool(actual <= self.value)
        except TypeError:
            # incomparable types, e.g. "tall" > 150
            return False
        return False

    def to_payload(self) -> Any:
        """Serialise the condition for external consumers."""
        if self.kind == "always" and self.key is None and not self.conditions:
            return None
        payload: dict[str, Any] = {"when": self.kind}
        if self.key is not None:
            payload["key"] = self.key
        if self.value is not None:
            payload["value"] = self.value
        if self.low is not None:
            payload["low"] = self.low
        if self.high is not None:
            payload["high"] = self.high
        if self.conditions:
            payload["conditions"] = [c.to_payload() for c in self.conditions]
        return payload


def between(key: str, low: float | None = None, high: float | None = None) -> Condition:
    """Inclusive range check on one attribute."""
    return Condition(kind="between", key=key, low=low, high=high)


def equals(key: str, value: Any) -> Condition:
    return Condition(kind="equals", key=key, value=value)
