"""Node — one capability call merged into an agent's attributes."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from agentsim.engine.agent import AgentState, HistoryEntry
from agentsim.errors import CapabilityCallError
from agentsim.llm.capability import Capability
from agentsim.llm.schema import Schema, encapsulate_schema
from agentsim.session.wire import Wire

logger = logging.getLogger(__name__)

DEFAULT_APPEND_MESSAGE = (
    "Process the JSON object and make changes based on your instructions."
)

Reply = str | tuple[str, str] | list[str]


@dataclass(frozen=True)
class NodeConfig:
    """What a node asks of its capability."""

    capability: Capability
    instructions: str
    append_message: str | None = None
    schema: Schema | None = None
    use_chain_of_thought: bool = False


class Node:
    """A single processing step.

    Calls the capability with the agent's current attributes, merges the
    returned change set, and appends a history entry. Failures of the call
    itself are logged and leave the agent untouched.
    """

    def __init__(self, node_id: str, config: NodeConfig) -> None:
        self._id = node_id
        self._config = config

    @property
    def id(self) -> str:
        return self._id

    @property
    def config(self) -> NodeConfig:
        return self._config

    @property
    def capability(self) -> Capability:
        return self._config.capability

    async def execute(
        self,
        agent: AgentState,
        *,
        process_id: str | None = None,
        retries: int = 0,
        timeout: float | None = None,
        retry_wait: float = 1.0,
        wire: Wire | None = None,
    ) -> HistoryEntry | None:
        """Run this node for one agent.

        Returns the appended history entry, or ``None`` when the capability
        call failed and the step was skipped.
        """
        try:
            reply = await self._call_with_policy(agent, retries, timeout, retry_wait)
        except Exception as e:
            err = CapabilityCallError(self._id, agent.id, e)
            logger.warning("%s", err)
            if wire:
                wire.send_node_failed(self._id, agent.id, str(e) or type(e).__name__)
            return None

        changes, reasoning = parse_reply(reply)
        entry = agent.apply(
            changes,
            node_id=self._id,
            process_id=process_id,
            reasoning=reasoning if self._config.use_chain_of_thought else None,
        )
        logger.debug("Node %s applied %s to agent %s", self._id, changes, agent.id)
        if wire:
            wire.send_node_applied(self._id, agent.id, changes, entry.reasoning)
        return entry

    async def _call_with_policy(
        self,
        agent: AgentState,
        retries: int,
        timeout: float | None,
        retry_wait: float,
    ) -> Reply:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential(multiplier=retry_wait, max=30),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                call = self._request(agent)
                if timeout is not None:
                    return await asyncio.wait_for(call, timeout)
                return await call
        raise AssertionError("unreachable")  # pragma: no cover

    async def _request(self, agent: AgentState) -> Reply:
        cfg = self._config
        content = json.dumps(agent.attributes)
        instruction = cfg.append_message or DEFAULT_APPEND_MESSAGE
        schema = cfg.schema or cfg.capability.create_schema(agent.attributes)

        if cfg.use_chain_of_thought:
            return await cfg.capability.prompt_thinking(
                cfg.instructions, content, instruction, schema
            )
        return await cfg.capability.prompt(cfg.instructions, content, instruction, schema)

    def __repr__(self) -> str:
        return f"Node({self._id!r})"


def parse_reply(reply: Reply) -> tuple[dict[str, Any], str | None]:
    """Split a capability reply into (changes, reasoning).

    A reply is a JSON object string, or a sequence whose first item is the
    JSON string and whose second item is reasoning text. Anything that does
    not decode to a JSON object becomes an error-marker change set.
    """
    if isinstance(reply, (tuple, list)):
        payload = reply[0] if reply else ""
        reasoning = reply[1] if len(reply) > 1 else None
    else:
        payload, reasoning = reply, None

    try:
        changes = json.loads(payload)
    except (TypeError, ValueError) as e:
        logger.warning("Failed to parse capability reply: %s", e)
        return {"_error": "Invalid response", "_raw": _raw(reply)}, reasoning

    if not isinstance(changes, dict):
        logger.warning("Capability reply is not a JSON object: %r", payload)
        return {"_error": "Invalid response", "_raw": _raw(reply)}, reasoning

    return changes, reasoning


def _raw(reply: Reply) -> Any:
    return list(reply) if isinstance(reply, (tuple, list)) else reply


def create_node(
    capability: Capability,
    instructions: str,
    properties: dict[str, Schema] | None = None,
    *,
    node_id: str | None = None,
    append_message: str | None = None,
    use_chain_of_thought: bool = False,
) -> Node:
    """Build a node, wrapping ``properties`` into an object schema.

    Without ``properties`` the schema is inferred from the agent's
    attributes at call time.
    """
    config = NodeConfig(
        capability=capability,
        instructions=instructions,
        append_message=append_message,
        schema=encapsulate_schema(properties) if properties else None,
        use_chain_of_thought=use_chain_of_thought,
    )
    return Node(node_id or str(uuid.uuid4()), config)
