"""Orchestration core for a terminal coding agent: provider resolution,
MCP tool servers, and streamed agent runs."""

__version__ = "0.1.0"
