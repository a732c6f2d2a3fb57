"""agentsim — drive populations of LLM-backed agents through processes."""

__version__ = "0.1.0"
