"""Orchestrator — drives one process at a time over the registered agents.

The orchestrator is the top-level controller that:
1. Owns the agent store
2. Binds a process as the current run and snapshots the active agents
3. Advances the run one step at a time (or loops to completion)
4. Aggregates usage across every capability the run has touched
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from agentsim.config import SimulationConfig
from agentsim.engine.agent import AgentState, AgentStore, Attributes
from agentsim.engine.process import LinearProcess
from agentsim.llm.capability import Capability
from agentsim.llm.usage import UsageStats
from agentsim.session.wire import Wire

logger = logging.getLogger(__name__)


@dataclass
class RunState:
    """Bookkeeping for the run in progress."""

    current_process_id: str | None = None
    active_agents: list[str] = field(default_factory=list)
    node_index: int = 0
    steps: int = 0
    is_complete: bool = True


class Orchestrator:
    """Coordinates a single active process against a set of agents."""

    def __init__(
        self,
        config: SimulationConfig | None = None,
        wire: Wire | None = None,
    ) -> None:
        self.config = config or SimulationConfig()
        self._wire = wire
        self._store = AgentStore()
        self._processes: dict[str, LinearProcess] = {}
        self._capabilities: dict[int, Capability] = {}
        self._state = RunState()

    # -- agents -------------------------------------------------------------

    def add_agent(self, attributes: Attributes, agent_id: str | None = None) -> str:
        """Register an agent and return its id."""
        return self._store.add(attributes, agent_id)

    def get_agent(self, agent_id: str) -> AgentState:
        """Raises :class:`AgentNotFoundError` for unknown ids."""
        return self._store.get(agent_id)

    def list_agents(self) -> list[AgentState]:
        return self._store.agents()

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def current_process(self) -> LinearProcess | None:
        if self._state.current_process_id is None:
            return None
        return self._processes.get(self._state.current_process_id)

    # -- runs ---------------------------------------------------------------

    def initialize_run(self, process: LinearProcess) -> None:
        """Bind ``process`` as the current run over every registered agent."""
        process.reset_execution()
        self._processes[process.id] = process
        self._state = RunState(
            current_process_id=process.id,
            active_agents=self._store.ids(),
            node_index=0,
            steps=0,
            is_complete=False,
        )

        for capability in process.capabilities():
            self._track_capability(capability)

        logger.info(
            "Initialized process %s with agents: %s",
            process.id,
            ", ".join(self._state.active_agents),
        )
        if self._wire:
            self._wire.send_run_begin(process.id, self._state.active_agents)

    async def step(self) -> bool:
        """Advance the current run by one step.

        Returns ``False`` when there is no run, the run has completed, or
        this step completed it.
        """
        if self._state.is_complete:
            return False

        process = self.current_process
        if process is None:
            self._state.is_complete = True
            return False

        agents = [self._store.get(agent_id) for agent_id in self._state.active_agents]
        self._state.steps += 1
        if self._wire:
            self._wire.send_step_begin(process.id, self._state.steps)

        has_more = await process.step(
            agents,
            max_concurrency=self.config.max_concurrency,
            wire=self._wire,
        )

        self._state.node_index = process.cursor
        if not has_more:
            self._state.is_complete = True
        if self._wire:
            self._wire.send_step_end(process.id, self._state.steps, has_more)
        return has_more

    async def run_to_completion(self, process: LinearProcess) -> RunState:
        """Initialize a run and step it until nothing is left to do."""
        logger.info("Process %s started", process.id)
        self.initialize_run(process)
        while await self.step():
            logger.info("Process %s: step %d", process.id, self._state.steps)
            if self.config.delay:
                await asyncio.sleep(self.config.delay)

        logger.info("Process %s completed after %d steps", process.id, self._state.steps)
        if self._wire:
            self._wire.send_run_end(process.id, self._state.steps)
        return self._state

    # -- usage --------------------------------------------------------------

    def _track_capability(self, capability: Capability) -> None:
        # identity, not equality: two handles with equal config still count twice
        self._capabilities.setdefault(id(capability), capability)

    def capabilities(self) -> list[Capability]:
        return list(self._capabilities.values())

    def aggregate_usage(self) -> UsageStats:
        """Sum usage over every distinct capability registered so far."""
        total = UsageStats()
        for capability in self._capabilities.values():
            total = total + capability.usage_stats()
        return total

    def reset_usage(self) -> None:
        for capability in self._capabilities.values():
            capability.reset_usage_stats()
