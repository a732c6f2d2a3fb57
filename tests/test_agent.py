"""Tests for agentsim.engine.agent (AgentState, HistoryEntry, AgentStore)."""

from __future__ import annotations

import dataclasses

import pytest

from agentsim.engine.agent import AgentState, AgentStore, HistoryEntry
from agentsim.errors import AgentNotFoundError


# ---------------------------------------------------------------------------
# AgentState.apply
# ---------------------------------------------------------------------------


class TestAgentStateApply:
    def test_merge_overwrites_and_keeps_untouched_keys(self) -> None:
        agent = AgentState(id="a", attributes={"height": 160, "name": "Alice"})
        agent.apply({"height": 165, "mood": "happy"}, node_id="n1")
        assert agent.attributes == {"height": 165, "name": "Alice", "mood": "happy"}

    def test_appends_one_entry_per_apply(self) -> None:
        agent = AgentState(id="a")
        agent.apply({"x": 1}, node_id="n1", process_id="p", reasoning="why")
        agent.apply({"x": 2}, node_id="n2")
        assert [h.node_id for h in agent.history] == ["n1", "n2"]
        first = agent.history[0]
        assert first.process_id == "p"
        assert first.reasoning == "why"
        assert agent.history[1].process_id is None
        assert agent.history[1].reasoning is None

    def test_attributes_equal_replay_of_history(self) -> None:
        agent = AgentState(id="a", attributes={"x": 0})
        for i, changes in enumerate([{"x": 1}, {"y": 2}, {"x": 3, "z": [1]}]):
            agent.apply(changes, node_id=f"n{i}")
        replayed = {"x": 0}
        for entry in agent.history:
            replayed.update(entry.changes)
        assert agent.attributes == replayed

    def test_history_changes_are_snapshots(self) -> None:
        agent = AgentState(id="a")
        changes = {"tags": ["a"]}
        agent.apply(changes, node_id="n1")
        changes["tags"].append("b")
        assert agent.history[0].changes == {"tags": ["a"]}

    def test_entry_is_immutable(self) -> None:
        entry = HistoryEntry(node_id="n", changes={})
        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.node_id = "other"  # type: ignore[misc]

    def test_timestamp_set(self) -> None:
        entry = AgentState(id="a").apply({}, node_id="n")
        assert isinstance(entry.timestamp, float)
        assert entry.timestamp > 0

    def test_to_dict(self) -> None:
        agent = AgentState(id="a", attributes={"x": 1})
        agent.apply({"x": 2}, node_id="n1", process_id="p")
        d = agent.to_dict()
        assert d["id"] == "a"
        assert d["attributes"] == {"x": 2}
        assert d["history"][0]["node_id"] == "n1"
        assert d["history"][0]["changes"] == {"x": 2}


# ---------------------------------------------------------------------------
# AgentStore
# ---------------------------------------------------------------------------


class TestAgentStore:
    def test_add_with_explicit_id(self) -> None:
        store = AgentStore()
        assert store.add({"x": 1}, "alice") == "alice"
        assert store.get("alice").attributes == {"x": 1}

    def test_add_generates_unique_ids(self) -> None:
        store = AgentStore()
        ids = {store.add({}) for _ in range(50)}
        assert len(ids) == 50
        assert len(store) == 50

    def test_attributes_are_copied(self) -> None:
        store = AgentStore()
        attrs = {"x": 1}
        store.add(attrs, "a")
        attrs["x"] = 2
        assert store.get("a").attributes == {"x": 1}

    def test_new_agent_has_empty_history(self) -> None:
        store = AgentStore()
        store.add({"x": 1}, "a")
        assert store.get("a").history == []

    def test_unknown_id_raises_not_found(self) -> None:
        store = AgentStore()
        with pytest.raises(AgentNotFoundError, match="ghost"):
            store.get("ghost")

    def test_not_found_is_a_key_error(self) -> None:
        with pytest.raises(KeyError):
            AgentStore().get("ghost")

    def test_registration_order(self) -> None:
        store = AgentStore()
        for name in ["c", "a", "b"]:
            store.add({}, name)
        assert store.ids() == ["c", "a", "b"]
        assert [a.id for a in store.agents()] == ["c", "a", "b"]
        assert [a.id for a in store] == ["c", "a", "b"]
        assert "a" in store
        assert "z" not in store
