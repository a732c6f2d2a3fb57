"""Wire protocol — decouples the engine from whoever watches a run.

Events flow from the orchestrator and processes to subscribers (the CLI,
a progress display, a test). Subscribers read from their own queue.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    RUN_BEGIN = "run_begin"
    RUN_END = "run_end"
    STEP_BEGIN = "step_begin"
    STEP_END = "step_end"
    NODE_APPLIED = "node_applied"
    NODE_FAILED = "node_failed"
    BRANCH_SELECTED = "branch_selected"
    BRANCH_COMPLETE = "branch_complete"
    ERROR = "error"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: engine -> subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    def send_run_begin(self, process_id: str, agent_ids: list[str]) -> None:
        self.send(
            WireEvent(
                type=EventType.RUN_BEGIN,
                data={"process_id": process_id, "agents": list(agent_ids)},
            )
        )

    def send_run_end(self, process_id: str, steps: int) -> None:
        self.send(
            WireEvent(
                type=EventType.RUN_END,
                data={"process_id": process_id, "steps": steps},
            )
        )

    def send_step_begin(self, process_id: str, step_no: int) -> None:
        self.send(
            WireEvent(
                type=EventType.STEP_BEGIN,
                data={"process_id": process_id, "step": step_no},
            )
        )

    def send_step_end(self, process_id: str, step_no: int, has_more: bool) -> None:
        self.send(
            WireEvent(
                type=EventType.STEP_END,
                data={"process_id": process_id, "step": step_no, "has_more": has_more},
            )
        )

    def send_node_applied(
        self,
        node_id: str,
        agent_id: str,
        changes: dict[str, Any],
        reasoning: str | None = None,
    ) -> None:
        self.send(
            WireEvent(
                type=EventType.NODE_APPLIED,
                data={
                    "node_id": node_id,
                    "agent_id": agent_id,
                    "changes": changes,
                    "reasoning": reasoning,
                },
            )
        )

    def send_node_failed(self, node_id: str, agent_id: str, error: str) -> None:
        self.send(
            WireEvent(
                type=EventType.NODE_FAILED,
                data={"node_id": node_id, "agent_id": agent_id, "error": error[:500]},
            )
        )

    def send_branch_selected(
        self, process_id: str, agent_id: str, branch_id: str, outcome: bool
    ) -> None:
        self.send(
            WireEvent(
                type=EventType.BRANCH_SELECTED,
                data={
                    "process_id": process_id,
                    "agent_id": agent_id,
                    "branch_id": branch_id,
                    "outcome": outcome,
                },
            )
        )

    def send_branch_complete(self, process_id: str, agent_id: str, branch_id: str) -> None:
        self.send(
            WireEvent(
                type=EventType.BRANCH_COMPLETE,
                data={
                    "process_id": process_id,
                    "agent_id": agent_id,
                    "branch_id": branch_id,
                },
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
