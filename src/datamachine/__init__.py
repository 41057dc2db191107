"""Data Machine: AI conversation loop and tool execution engine."""

__version__ = "0.1.0"
