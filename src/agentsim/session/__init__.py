"""Run event bus."""

from agentsim.session.wire import EventType, Wire, WireEvent

__all__ = ["EventType", "Wire", "WireEvent"]
