"""pyagenthost: tool execution core for local coding agents."""

__version__ = "0.1.0"
