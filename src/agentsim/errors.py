"""Exception types raised by the simulation engine."""

from __future__ import annotations


class AgentsimError(Exception):
    """Base class for agentsim errors."""


class CapabilityCallError(AgentsimError):
    """A capability call failed while a node was executing.

    Never escapes ``Node.execute``; it is logged and the step is skipped
    for the affected agent.
    """

    def __init__(self, node_id: str, agent_id: str, cause: BaseException) -> None:
        self.node_id = node_id
        self.agent_id = agent_id
        self.cause = cause
        super().__init__(f"Node {node_id} failed for agent {agent_id}: {cause}")


class AgentNotFoundError(AgentsimError, KeyError):
    """Lookup of an agent id that was never registered."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} not found in simulation")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


class InvalidStateError(AgentsimError):
    """An operation is not allowed in the current run state."""


class DefinitionError(AgentsimError):
    """A process or agent definition is malformed."""
