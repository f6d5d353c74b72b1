"""
Gateway module - Subprocess bridge to the query executor.

This module handles:
- JSON-RPC request framing and response unwrapping (protocol.py)
- Spawning executor processes with timeout and concurrency limits (executor.py)
"""
from schema_gateway.gateway.executor import QueryGateway
from schema_gateway.gateway.protocol import build_request, parse_last_json_line, unwrap_payload

__all__ = [
    "QueryGateway",
    "build_request",
    "parse_last_json_line",
    "unwrap_payload",
]
