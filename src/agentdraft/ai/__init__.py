"""AI client, agents, and the orchestration of agent turns."""

from .client import AIClient, ApproxByteCounter, TokenCounterRegistry

__all__ = ["AIClient", "TokenCounterRegistry", "ApproxByteCounter"]
