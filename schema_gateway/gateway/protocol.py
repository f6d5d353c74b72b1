"""
Line-delimited JSON-RPC framing used to talk to executor processes.

One request line goes in; the process may print any number of diagnostic
lines before the authoritative response, so the last line that parses as
JSON wins.
"""
import json
import uuid
from typing import Any, Dict, Optional

from schema_gateway.core.exceptions import GatewayFailure

JSONRPC_VERSION = "2.0"
TOOLS_CALL_METHOD = "tools/call"


def new_request_id() -> str:
    return uuid.uuid4().hex


def build_request(name: str, arguments: Dict[str, Any], request_id: Optional[str] = None) -> Dict[str, Any]:
    """Build a tools/call request object."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id or new_request_id(),
        "method": TOOLS_CALL_METHOD,
        "params": {"name": name, "arguments": arguments},
    }


def encode_request(request: Dict[str, Any]) -> bytes:
    """Serialize a request as a single newline-terminated line."""
    return (json.dumps(request, separators=(",", ":")) + "\n").encode("utf-8")


def parse_last_json_line(output: str) -> Optional[Any]:
    """
    Return the last non-empty line of output that parses as JSON.

    Returns:
        The parsed value, or None if no line parses
    """
    last = None
    found = False
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            last = json.loads(line)
            found = True
        except json.JSONDecodeError:
            continue
    return last if found else None


def unwrap_payload(response: Any) -> Any:
    """
    Extract the useful payload from a JSON-RPC response.

    Order of preference:
    1. result.content[0].text holding a JSON document (tool results wrap data this way)
    2. result
    3. the whole response

    Raises:
        GatewayFailure: If the response carries a JSON-RPC error or a tool error
    """
    if not isinstance(response, dict):
        return response

    error = response.get("error")
    if error is not None and "result" not in response:
        if isinstance(error, dict):
            message = error.get("message") or "Executor returned an error"
            detail = json.dumps(error.get("data")) if error.get("data") is not None else message
        else:
            message = str(error)
            detail = message
        raise GatewayFailure(f"Executor error: {message}", detail=detail)

    if "result" not in response:
        return response

    result = response["result"]
    text = _first_content_text(result)

    if isinstance(result, dict) and result.get("isError"):
        raise GatewayFailure("Executor tool reported an error", detail=text or json.dumps(result))

    if text is not None:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            # Plain-text tool output
            return result
    return result


def _first_content_text(result: Any) -> Optional[str]:
    if not isinstance(result, dict):
        return None
    content = result.get("content")
    if not isinstance(content, list) or not content:
        return None
    first = content[0]
    if isinstance(first, dict) and isinstance(first.get("text"), str):
        return first["text"]
    return None
