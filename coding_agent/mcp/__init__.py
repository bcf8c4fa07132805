"""
MCP (Model Context Protocol) client side: transports, JSON-RPC client,
connection lifecycle with retry and health checks, catalog cache, and the
loader that turns remote tools into registry entries.
"""
