"""Process execution engine — agents, nodes, processes, orchestrator."""

from agentsim.engine.agent import AgentState, AgentStore, Attributes, HistoryEntry
from agentsim.engine.conditional import BranchState, ConditionalProcess
from agentsim.engine.conditions import Condition, between, equals
from agentsim.engine.node import Node, NodeConfig, create_node, parse_reply
from agentsim.engine.orchestrator import Orchestrator, RunState
from agentsim.engine.process import LinearProcess, gather_bounded

__all__ = [
    "AgentState",
    "AgentStore",
    "Attributes",
    "HistoryEntry",
    "BranchState",
    "ConditionalProcess",
    "Condition",
    "between",
    "equals",
    "Node",
    "NodeConfig",
    "create_node",
    "parse_reply",
    "Orchestrator",
    "RunState",
    "LinearProcess",
    "gather_bounded",
]
