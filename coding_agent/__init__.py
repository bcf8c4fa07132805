"""
coding_agent: an async coding-agent runtime.

Drives a streaming, tool-using conversation with a language model, gates
tool execution behind a safety policy, keeps the history inside the
model's context window, and manages remote MCP tool servers.
"""

__version__ = "0.1.0"
