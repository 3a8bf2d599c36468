"""Agent Switchboard: many AI agents, one human operator."""

__version__ = "0.1.0"
