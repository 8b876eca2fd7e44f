"""duckrow: install and track AI agent skills, agents and MCP servers."""

__version__ = "0.4.0"
