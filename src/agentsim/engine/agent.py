"""Agent state, history entries, and the agent store."""

from __future__ import annotations

import copy
import time
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Union

from agentsim.errors import AgentNotFoundError

JSONValue = Union[str, int, float, bool, None, list["JSONValue"], dict[str, "JSONValue"]]
Attributes = dict[str, JSONValue]


@dataclass(frozen=True)
class HistoryEntry:
    """One applied change set. Never modified after creation."""

    node_id: str
    changes: dict[str, Any]
    process_id: str | None = None
    reasoning: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class AgentState:
    """An agent's attributes plus the history that produced them."""

    id: str
    attributes: Attributes = field(default_factory=dict)
    history: list[HistoryEntry] = field(default_factory=list)

    def apply(
        self,
        changes: dict[str, Any],
        node_id: str,
        process_id: str | None = None,
        reasoning: str | None = None,
    ) -> HistoryEntry:
        """Merge ``changes`` into the attributes and record the merge."""
        self.attributes = {**self.attributes, **changes}
        entry = HistoryEntry(
            node_id=node_id,
            changes=copy.deepcopy(changes),
            process_id=process_id,
            reasoning=reasoning,
        )
        self.history.append(entry)
        return entry

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "attributes": self.attributes,
            "history": [
                {
                    "timestamp": h.timestamp,
                    "node_id": h.node_id,
                    "process_id": h.process_id,
                    "changes": h.changes,
                    "reasoning": h.reasoning,
                }
                for h in self.history
            ],
        }


class AgentStore:
    """Owns every registered agent, keyed by id, in registration order."""

    def __init__(self) -> None:
        self._agents: dict[str, AgentState] = {}

    def add(self, attributes: Attributes, agent_id: str | None = None) -> str:
        """Register an agent and return its id.

        Registering an existing id replaces that agent.
        """
        agent_id = agent_id or str(uuid.uuid4())
        self._agents[agent_id] = AgentState(id=agent_id, attributes=dict(attributes))
        return agent_id

    def get(self, agent_id: str) -> AgentState:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise AgentNotFoundError(agent_id) from None

    def ids(self) -> list[str]:
        return list(self._agents.keys())

    def agents(self) -> list[AgentState]:
        return list(self._agents.values())

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[AgentState]:
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)
