"""Linear processes — an ordered list of nodes and one shared cursor."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from typing import TypeVar

from agentsim.config import ProcessConfig
from agentsim.engine.agent import AgentState, HistoryEntry
from agentsim.engine.node import Node
from agentsim.llm.capability import Capability
from agentsim.session.wire import Wire

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def gather_bounded(
    aws: Iterable[Awaitable[T]], max_concurrency: int | None = None
) -> list[T]:
    """Await all ``aws`` concurrently, at most ``max_concurrency`` at a time.

    ``None`` or a non-positive limit means unbounded. Every awaitable runs
    to completion before the first exception, if any, is re-raised.
    """
    if not max_concurrency or max_concurrency <= 0:
        results = await asyncio.gather(*aws, return_exceptions=True)
    else:
        sem = asyncio.Semaphore(max_concurrency)

        async def _bounded(aw: Awaitable[T]) -> T:
            async with sem:
                return await aw

        results = await asyncio.gather(
            *(_bounded(aw) for aw in aws), return_exceptions=True
        )

    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


class LinearProcess:
    """Runs agents through the same nodes in the same order.

    The cursor is shared by every agent driven through this instance: a
    process-wide ``step`` runs the node under the cursor for all agents and
    then advances it once.
    """

    def __init__(
        self,
        process_id: str,
        nodes: Iterable[Node] = (),
        config: ProcessConfig | None = None,
    ) -> None:
        self.id = process_id
        self.config = config or ProcessConfig()
        self.nodes: list[Node] = list(nodes)
        self.cursor = 0

    def add_node(self, node: Node) -> LinearProcess:
        self.nodes.append(node)
        return self

    @property
    def is_complete(self) -> bool:
        return self.cursor >= len(self.nodes)

    def reset_execution(self) -> None:
        self.cursor = 0

    async def run_node(
        self,
        node: Node,
        agent: AgentState,
        wire: Wire | None = None,
    ) -> HistoryEntry | None:
        """Execute one node for one agent under this process's call policy."""
        return await node.execute(
            agent,
            process_id=self.id,
            retries=self.config.retries,
            timeout=self.config.timeout,
            retry_wait=self.config.retry_wait,
            wire=wire,
        )

    async def execute_agent_step(
        self, agent: AgentState, wire: Wire | None = None
    ) -> bool:
        """Run the node under the cursor for ``agent`` and advance.

        Returns ``False`` without doing anything once the process is
        exhausted.
        """
        if self.cursor >= len(self.nodes):
            return False
        await self.run_node(self.nodes[self.cursor], agent, wire)
        self.cursor += 1
        return True

    async def step(
        self,
        agents: list[AgentState],
        *,
        max_concurrency: int | None = None,
        wire: Wire | None = None,
    ) -> bool:
        """Run the current node for every agent, then advance the cursor.

        All agents finish this node before the call returns. Returns whether
        more nodes remain.
        """
        if self.is_complete:
            return False
        node = self.nodes[self.cursor]
        logger.info(
            "Process %s: node %d/%d (%s) for %d agents",
            self.id,
            self.cursor + 1,
            len(self.nodes),
            node.id,
            len(agents),
        )
        await gather_bounded(
            (self.run_node(node, agent, wire) for agent in agents), max_concurrency
        )
        self.cursor += 1
        return not self.is_complete

    async def execute(
        self,
        agents: Iterable[AgentState],
        *,
        delay: float = 0.0,
        wire: Wire | None = None,
    ) -> None:
        """Run every agent through every node, one agent at a time.

        Does not touch the cursor.
        """
        for agent in agents:
            for node in self.nodes:
                await self.run_node(node, agent, wire)
                if delay:
                    await asyncio.sleep(delay)

    def capabilities(self) -> list[Capability]:
        return [node.capability for node in self.nodes]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id!r}, nodes={len(self.nodes)})"
