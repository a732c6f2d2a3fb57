"""Simulation definitions — agents and processes described in YAML.

A definition file looks like:

    simulation:
      description: Height survey
      delay: 0
    agents:
      - id: alice
        attributes: {name: Alice, height: 160}
    processes:
      - id: tall
        nodes:
          - instructions: You are a basketball coach...
            properties: {position: {type: string}}
      - id: short
        nodes: [...]
      - id: survey
        config: {retries: 1, timeout: 20}
        nodes: [...]
        condition: {when: between, key: height, low: 150, high: 200}
        true_branch: tall
        false_branch: short
    run: survey

Conditional processes name their branches by process id; branches must be
linear processes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from agentsim.config import ProcessConfig, SimulationConfig
from agentsim.engine.conditional import ConditionalProcess
from agentsim.engine.conditions import Condition
from agentsim.engine.node import Node, create_node
from agentsim.engine.orchestrator import Orchestrator
from agentsim.engine.process import LinearProcess
from agentsim.errors import DefinitionError
from agentsim.llm.capability import Capability
from agentsim.session.wire import Wire

logger = logging.getLogger(__name__)


@dataclass
class AgentSpec:
    attributes: dict[str, Any]
    id: str | None = None


@dataclass
class Definition:
    """A loaded definition, bound to one capability."""

    agents: list[AgentSpec] = field(default_factory=list)
    processes: dict[str, LinearProcess] = field(default_factory=dict)
    run: str | None = None
    simulation: dict[str, Any] = field(default_factory=dict)

    @property
    def entry(self) -> LinearProcess:
        """The process to run: ``run`` if given, else the last one defined."""
        if not self.processes:
            raise DefinitionError("Definition has no processes")
        if self.run is None:
            return list(self.processes.values())[-1]
        try:
            return self.processes[self.run]
        except KeyError:
            raise DefinitionError(f"Unknown process to run: {self.run!r}") from None

    def build_orchestrator(
        self,
        config: SimulationConfig | None = None,
        wire: Wire | None = None,
    ) -> Orchestrator:
        """Create an orchestrator with every agent registered.

        Simulation settings in the definition override ``config``.
        """
        base = config or SimulationConfig()
        if self.simulation:
            base = SimulationConfig.model_validate(
                {**base.model_dump(), **self.simulation}
            )
        orchestrator = Orchestrator(base, wire=wire)
        for agent in self.agents:
            orchestrator.add_agent(agent.attributes, agent.id)
        return orchestrator


def load_definition(
    path: str | Path,
    capability: Capability,
    process_config: ProcessConfig | None = None,
) -> Definition:
    """Read a YAML definition file.

    ``process_config`` is the base policy; a process's own ``config``
    mapping overrides individual fields of it.
    """
    import yaml  # lazy import — only needed when loading definitions

    with open(path, "r") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise DefinitionError(f"{path}: invalid YAML: {e}") from e

    definition = parse_definition(raw, capability, process_config)
    logger.info(
        "Loaded %s: %d agents, %d processes",
        path,
        len(definition.agents),
        len(definition.processes),
    )
    return definition


def parse_definition(
    raw: dict[str, Any],
    capability: Capability,
    process_config: ProcessConfig | None = None,
) -> Definition:
    """Build engine objects from an already-parsed definition mapping."""
    if not isinstance(raw, dict):
        raise DefinitionError("Definition must be a mapping")
    base = process_config or ProcessConfig()

    agents = [_parse_agent(a) for a in raw.get("agents") or []]

    process_specs = raw.get("processes") or []
    processes: dict[str, LinearProcess] = {}

    # Linear processes first so conditionals can reference them in any order
    for spec in process_specs:
        if not _is_conditional(spec):
            process = _parse_linear(spec, capability, base)
            processes[process.id] = process
    for spec in process_specs:
        if _is_conditional(spec):
            process = _parse_conditional(spec, capability, processes, base)
            processes[process.id] = process

    simulation = raw.get("simulation") or {}
    if not isinstance(simulation, dict):
        raise DefinitionError("'simulation' must be a mapping")

    return Definition(
        agents=agents,
        processes=processes,
        run=raw.get("run"),
        simulation=simulation,
    )


def _parse_agent(raw: Any) -> AgentSpec:
    if not isinstance(raw, dict):
        raise DefinitionError(f"Agent entry must be a mapping: {raw!r}")
    attributes = raw.get("attributes", {})
    if not isinstance(attributes, dict):
        raise DefinitionError(f"Agent attributes must be a mapping: {raw!r}")
    agent_id = raw.get("id")
    return AgentSpec(attributes=attributes, id=str(agent_id) if agent_id else None)


def _is_conditional(spec: Any) -> bool:
    return isinstance(spec, dict) and (
        "condition" in spec or "true_branch" in spec or "false_branch" in spec
    )


def _process_id(spec: Any) -> str:
    if not isinstance(spec, dict) or not spec.get("id"):
        raise DefinitionError(f"Process entry needs an 'id': {spec!r}")
    return str(spec["id"])


def _process_config(spec: dict[str, Any], base: ProcessConfig) -> ProcessConfig:
    overrides = spec.get("config") or {}
    if not isinstance(overrides, dict):
        raise DefinitionError(f"Process {spec.get('id')}: 'config' must be a mapping")
    try:
        return ProcessConfig.model_validate({**base.model_dump(), **overrides})
    except ValidationError as e:
        raise DefinitionError(f"Process {spec.get('id')}: invalid config: {e}") from e


def _parse_nodes(spec: dict[str, Any], capability: Capability) -> list[Node]:
    nodes = []
    for i, raw in enumerate(spec.get("nodes") or []):
        if not isinstance(raw, dict) or not raw.get("instructions"):
            raise DefinitionError(
                f"Process {spec.get('id')}: node {i} needs 'instructions'"
            )
        nodes.append(
            create_node(
                capability,
                raw["instructions"],
                raw.get("properties"),
                node_id=str(raw.get("id") or f"{spec['id']}.{i}"),
                append_message=raw.get("append_message"),
                use_chain_of_thought=bool(raw.get("chain_of_thought", False)),
            )
        )
    return nodes


def _parse_linear(
    spec: Any, capability: Capability, base: ProcessConfig
) -> LinearProcess:
    process_id = _process_id(spec)
    return LinearProcess(
        process_id,
        _parse_nodes(spec, capability),
        _process_config(spec, base),
    )


def _parse_conditional(
    spec: dict[str, Any],
    capability: Capability,
    processes: dict[str, LinearProcess],
    base: ProcessConfig,
) -> ConditionalProcess:
    process_id = _process_id(spec)
    branches = []
    for key in ("true_branch", "false_branch"):
        ref = spec.get(key)
        if ref is None:
            # a missing branch is an empty one
            branches.append(LinearProcess(f"{process_id}.{key}"))
            continue
        branch = processes.get(str(ref))
        if branch is None or isinstance(branch, ConditionalProcess):
            raise DefinitionError(
                f"Process {process_id}: {key} must name a linear process, got {ref!r}"
            )
        branches.append(branch)

    return ConditionalProcess(
        process_id,
        Condition.from_raw(spec.get("condition")),
        branches[0],
        branches[1],
        _parse_nodes(spec, capability),
        _process_config(spec, base),
    )
