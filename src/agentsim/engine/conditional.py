"""Conditional processes — a shared prefix, then a per-agent branch.

Phases of one run:

1. Shared prefix: identical to :class:`LinearProcess`. Every agent runs
   the node under the shared cursor; the cursor advances once per round.
2. Branch execution: once the prefix is exhausted, each agent is bound to
   ``true_branch`` or ``false_branch`` by evaluating the predicate once on
   its attributes at that moment. The binding is sticky for the rest of the
   run. Each binding carries its own cursor, so agents sharing a branch
   object progress independently of each other.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from agentsim.config import ProcessConfig
from agentsim.engine.agent import AgentState
from agentsim.engine.node import Node
from agentsim.engine.process import LinearProcess, gather_bounded
from agentsim.errors import InvalidStateError
from agentsim.llm.capability import Capability
from agentsim.session.wire import Wire

logger = logging.getLogger(__name__)

Predicate = Callable[[Mapping[str, Any]], bool]


@dataclass
class BranchState:
    """One agent's progress through the branch it was bound to."""

    branch: LinearProcess
    outcome: bool
    cursor: int = 0
    completed: bool = False


class ConditionalProcess(LinearProcess):
    """A linear prefix followed by a predicate-selected branch per agent."""

    def __init__(
        self,
        process_id: str,
        condition: Predicate,
        true_branch: LinearProcess,
        false_branch: LinearProcess,
        nodes: Iterable[Node] = (),
        config: ProcessConfig | None = None,
    ) -> None:
        super().__init__(process_id, nodes, config)
        _check_branch(true_branch)
        _check_branch(false_branch)
        self.condition = condition
        self.true_branch = true_branch
        self.false_branch = false_branch
        self._branch_states: dict[str, BranchState] = {}
        self._branching = False

    @property
    def in_prefix(self) -> bool:
        return self.cursor < len(self.nodes)

    @property
    def is_complete(self) -> bool:
        """Prefix exhausted, the branch phase has been stepped, and every
        bound agent finished its branch.

        A fresh process is never complete, even with an empty prefix.
        """
        return (
            not self.in_prefix
            and self._branching
            and all(s.completed for s in self._branch_states.values())
        )

    def branch_state(self, agent_id: str) -> BranchState | None:
        return self._branch_states.get(agent_id)

    def active_branch(self, agent_id: str) -> LinearProcess | None:
        state = self._branch_states.get(agent_id)
        return state.branch if state else None

    async def step(
        self,
        agents: list[AgentState],
        *,
        max_concurrency: int | None = None,
        wire: Wire | None = None,
    ) -> bool:
        """Advance the run by one round.

        Returns ``True`` while the prefix is in progress or any of
        ``agents`` has not finished its branch.
        """
        if self.in_prefix:
            node = self.nodes[self.cursor]
            logger.info(
                "Process %s: prefix node %d/%d (%s) for %d agents",
                self.id,
                self.cursor + 1,
                len(self.nodes),
                node.id,
                len(agents),
            )
            await gather_bounded(
                (self.run_node(node, agent, wire) for agent in agents),
                max_concurrency,
            )
            self.cursor += 1
            return True

        self._branching = True
        await gather_bounded(
            (self._advance_branch(agent, wire) for agent in agents), max_concurrency
        )
        return any(not self._branch_states[a.id].completed for a in agents)

    async def execute_agent_step(
        self, agent: AgentState, wire: Wire | None = None
    ) -> bool:
        """Advance one agent by one node, through the prefix and then its
        branch. Returns ``False`` once that agent has nothing left to run.
        """
        if self.in_prefix:
            await self.run_node(self.nodes[self.cursor], agent, wire)
            self.cursor += 1
            return True
        self._branching = True
        state = self._branch_states.get(agent.id)
        if state is not None and state.completed:
            return False
        await self._advance_branch(agent, wire)
        return True

    def _bind(self, agent: AgentState, wire: Wire | None) -> BranchState:
        # a predicate that raises routes the agent to the false branch
        try:
            outcome = bool(self.condition(agent.attributes))
        except Exception as e:
            logger.warning(
                "Process %s: condition failed for agent %s: %s", self.id, agent.id, e
            )
            if wire:
                wire.send_error(f"Condition of {self.id} failed for agent {agent.id}: {e}")
            outcome = False
        branch = self.true_branch if outcome else self.false_branch
        state = BranchState(branch=branch, outcome=outcome)
        if not branch.nodes:
            state.completed = True
        self._branch_states[agent.id] = state
        logger.info(
            "Process %s: agent %s -> %s branch %s",
            self.id,
            agent.id,
            "true" if outcome else "false",
            branch.id,
        )
        if wire:
            wire.send_branch_selected(self.id, agent.id, branch.id, outcome)
        return state

    async def _advance_branch(self, agent: AgentState, wire: Wire | None) -> None:
        state = self._branch_states.get(agent.id)
        if state is None:
            state = self._bind(agent, wire)
        if state.completed:
            return

        branch = state.branch
        await branch.run_node(branch.nodes[state.cursor], agent, wire)
        state.cursor += 1
        if state.cursor >= len(branch.nodes):
            state.completed = True
            logger.debug("Process %s: agent %s finished %s", self.id, agent.id, branch.id)
            if wire:
                wire.send_branch_complete(self.id, agent.id, branch.id)

    async def execute(
        self,
        agents: Iterable[AgentState],
        *,
        delay: float = 0.0,
        wire: Wire | None = None,
    ) -> None:
        """Run each agent through the prefix and then its branch, one agent at
        a time. Bindings made here are recorded like those of a stepped run.
        """
        for agent in agents:
            for node in self.nodes:
                await self.run_node(node, agent, wire)
                if delay:
                    await asyncio.sleep(delay)
            self._branching = True
            state = self._branch_states.get(agent.id) or self._bind(agent, wire)
            while not state.completed:
                await self._advance_branch(agent, wire)
                if delay:
                    await asyncio.sleep(delay)

    def reset_execution(self) -> None:
        super().reset_execution()
        self._branch_states.clear()
        self._branching = False
        self.true_branch.reset_execution()
        self.false_branch.reset_execution()

    def update_branches(
        self,
        true_branch: LinearProcess | None = None,
        false_branch: LinearProcess | None = None,
    ) -> None:
        """Swap branch processes between runs."""
        if self._branch_states:
            raise InvalidStateError(
                f"Cannot update branches of {self.id} while agents are bound; "
                "call reset_execution() first"
            )
        if true_branch is not None:
            _check_branch(true_branch)
            self.true_branch = true_branch
        if false_branch is not None:
            _check_branch(false_branch)
            self.false_branch = false_branch

    def capabilities(self) -> list[Capability]:
        return [
            *super().capabilities(),
            *self.true_branch.capabilities(),
            *self.false_branch.capabilities(),
        ]


def _check_branch(branch: LinearProcess) -> None:
    # branch progress is tracked per agent against branch.nodes only
    if isinstance(branch, ConditionalProcess):
        raise TypeError(f"Branch {branch.id} must be a linear process")
