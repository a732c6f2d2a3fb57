"""Tests for agentsim.engine.node (Node, parse_reply, create_node)."""

from __future__ import annotations

import asyncio
from typing import Any

from agentsim.engine.agent import AgentState
from agentsim.engine.node import (
    DEFAULT_APPEND_MESSAGE,
    Node,
    NodeConfig,
    create_node,
    parse_reply,
)
from agentsim.session.wire import EventType, Wire


# ---------------------------------------------------------------------------
# parse_reply
# ---------------------------------------------------------------------------


class TestParseReply:
    def test_plain_json(self) -> None:
        assert parse_reply('{"a": 1}') == ({"a": 1}, None)

    def test_pair_with_reasoning(self) -> None:
        assert parse_reply(('{"a": 1}', "because")) == ({"a": 1}, "because")

    def test_list_reply(self) -> None:
        assert parse_reply(['{"a": 1}', "because"]) == ({"a": 1}, "because")

    def test_nested_values(self) -> None:
        changes, _ = parse_reply('{"a": {"b": [1, 2]}}')
        assert changes == {"a": {"b": [1, 2]}}

    def test_malformed_json_becomes_error_marker(self) -> None:
        changes, reasoning = parse_reply("not json")
        assert changes == {"_error": "Invalid response", "_raw": "not json"}
        assert reasoning is None

    def test_malformed_pair_keeps_reasoning(self) -> None:
        changes, reasoning = parse_reply(("{oops", "because"))
        assert changes["_error"] == "Invalid response"
        assert changes["_raw"] == ["{oops", "because"]
        assert reasoning == "because"

    def test_non_object_json_is_error(self) -> None:
        changes, _ = parse_reply("[1, 2, 3]")
        assert changes["_error"] == "Invalid response"

    def test_empty_sequence(self) -> None:
        changes, reasoning = parse_reply(())
        assert changes["_error"] == "Invalid response"
        assert reasoning is None


# ---------------------------------------------------------------------------
# Node.execute
# ---------------------------------------------------------------------------


class TestNodeExecute:
    async def test_merges_changes_and_records_history(self, fake_capability) -> None:
        cap = fake_capability(lambda system, attrs: {"height": attrs["height"] + 5})
        node = create_node(cap, "grow", node_id="grow")
        agent = AgentState(id="a", attributes={"height": 160, "name": "Alice"})

        entry = await node.execute(agent, process_id="p1")

        assert agent.attributes == {"height": 165, "name": "Alice"}
        assert len(agent.history) == 1
        assert entry is agent.history[0]
        assert entry.node_id == "grow"
        assert entry.process_id == "p1"
        assert entry.changes == {"height": 165}
        assert entry.reasoning is None

    async def test_request_contents(self, capability) -> None:
        node = create_node(capability, "You are a coach.")
        agent = AgentState(id="a", attributes={"height": 160})
        await node.execute(agent)

        call = capability.calls[0]
        assert call["system"] == "You are a coach."
        assert call["attributes"] == {"height": 160}
        assert call["instruction"] == DEFAULT_APPEND_MESSAGE

    async def test_custom_append_message(self, capability) -> None:
        node = create_node(capability, "sys", append_message="Only change height.")
        await node.execute(AgentState(id="a"))
        assert capability.calls[0]["instruction"] == "Only change height."

    async def test_explicit_schema_used(self, capability) -> None:
        node = create_node(capability, "sys", {"position": {"type": "string"}})
        await node.execute(AgentState(id="a", attributes={"height": 1}))
        assert capability.calls[0]["schema"] == {
            "type": "object",
            "properties": {"position": {"type": "string"}},
        }

    async def test_schema_inferred_from_attributes(self, capability) -> None:
        node = create_node(capability, "sys")
        await node.execute(AgentState(id="a", attributes={"height": 1, "name": "x"}))
        assert capability.calls[0]["schema"] == {
            "type": "object",
            "properties": {"height": {"type": "number"}, "name": {"type": "string"}},
        }

    async def test_chain_of_thought_records_reasoning(self, fake_capability) -> None:
        cap = fake_capability(lambda s, a: {"x": 1}, reasoning="I felt like it")
        node = create_node(cap, "sys", use_chain_of_thought=True)
        agent = AgentState(id="a")
        await node.execute(agent)
        assert agent.history[0].reasoning == "I felt like it"
        assert "_reasoning" not in agent.attributes

    async def test_malformed_reply_is_merged_not_raised(self, fake_capability) -> None:
        cap = fake_capability(lambda s, a: "definitely not json")
        node = create_node(cap, "sys")
        agent = AgentState(id="a", attributes={"x": 1})
        entry = await node.execute(agent)
        assert entry is not None
        assert agent.attributes["_error"] == "Invalid response"
        assert agent.attributes["_raw"] == "definitely not json"
        assert agent.attributes["x"] == 1
        assert len(agent.history) == 1

    async def test_capability_failure_leaves_agent_untouched(
        self, fake_capability
    ) -> None:
        cap = fake_capability(fail_when=lambda attrs: True)
        node = create_node(cap, "sys")
        agent = AgentState(id="a", attributes={"x": 1})
        entry = await node.execute(agent)
        assert entry is None
        assert agent.attributes == {"x": 1}
        assert agent.history == []

    async def test_failure_emits_wire_event(self, fake_capability) -> None:
        cap = fake_capability(fail_when=lambda attrs: True)
        node = create_node(cap, "sys", node_id="n1")
        wire = Wire()
        q = wire.subscribe()
        await node.execute(AgentState(id="a"), wire=wire)
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.NODE_FAILED
        assert event.data["node_id"] == "n1"
        assert event.data["agent_id"] == "a"

    async def test_success_emits_wire_event(self, fake_capability) -> None:
        cap = fake_capability(lambda s, a: {"x": 2})
        node = create_node(cap, "sys", node_id="n1")
        wire = Wire()
        q = wire.subscribe()
        await node.execute(AgentState(id="a"), wire=wire)
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.NODE_APPLIED
        assert event.data["changes"] == {"x": 2}


# ---------------------------------------------------------------------------
# Node.execute — retry and timeout policy
# ---------------------------------------------------------------------------


class _FlakyCapability:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.attempts = 0

    async def prompt(self, system: str, content: str, instruction: str, schema: Any = None) -> str:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError(f"fail {self.attempts}")
        return '{"ok": true}'

    def create_schema(self, sample: dict[str, Any]) -> dict[str, Any]:
        return {"type": "object"}


class _SlowCapability:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def prompt(self, system: str, content: str, instruction: str, schema: Any = None) -> str:
        await asyncio.sleep(self.delay)
        return '{"ok": true}'

    def create_schema(self, sample: dict[str, Any]) -> dict[str, Any]:
        return {"type": "object"}


class TestNodePolicy:
    async def test_no_retries_by_default(self) -> None:
        cap = _FlakyCapability(failures=1)
        node = Node("n", NodeConfig(capability=cap, instructions="sys"))  # type: ignore[arg-type]
        agent = AgentState(id="a")
        assert await node.execute(agent) is None
        assert cap.attempts == 1

    async def test_retry_then_succeed(self) -> None:
        cap = _FlakyCapability(failures=2)
        node = Node("n", NodeConfig(capability=cap, instructions="sys"))  # type: ignore[arg-type]
        agent = AgentState(id="a")
        entry = await node.execute(agent, retries=2, retry_wait=0)
        assert entry is not None
        assert cap.attempts == 3
        assert agent.attributes == {"ok": True}
        assert len(agent.history) == 1

    async def test_gives_up_after_retries(self) -> None:
        cap = _FlakyCapability(failures=5)
        node = Node("n", NodeConfig(capability=cap, instructions="sys"))  # type: ignore[arg-type]
        agent = AgentState(id="a")
        assert await node.execute(agent, retries=2, retry_wait=0) is None
        assert cap.attempts == 3
        assert agent.history == []

    async def test_timeout_skips_step(self) -> None:
        node = Node("n", NodeConfig(capability=_SlowCapability(1.0), instructions="sys"))  # type: ignore[arg-type]
        agent = AgentState(id="a")
        assert await node.execute(agent, timeout=0.01) is None
        assert agent.history == []

    async def test_within_timeout(self) -> None:
        node = Node("n", NodeConfig(capability=_SlowCapability(0.0), instructions="sys"))  # type: ignore[arg-type]
        agent = AgentState(id="a")
        assert await node.execute(agent, timeout=5.0) is not None


# ---------------------------------------------------------------------------
# create_node
# ---------------------------------------------------------------------------


class TestCreateNode:
    def test_generates_id(self, capability) -> None:
        a = create_node(capability, "sys")
        b = create_node(capability, "sys")
        assert a.id != b.id

    def test_explicit_id(self, capability) -> None:
        assert create_node(capability, "sys", node_id="n1").id == "n1"

    def test_defaults(self, capability) -> None:
        node = create_node(capability, "sys")
        assert node.capability is capability
        assert node.config.schema is None
        assert node.config.use_chain_of_thought is False
        assert node.config.append_message is None
