"""
Query Gateway - Executes queries through an external executor process.

Each call spawns one executor process, writes one JSON-RPC request line
to its stdin, closes stdin and collects stdout/stderr until the process
exits. Calls are independent: nothing is shared between them except
read-only configuration and the concurrency semaphore.

Hardening over a bare spawn-and-wait:
1. Timeout - the process is killed when it outlives timeout_seconds
2. Bounded concurrency - at most max_concurrent processes run at once
3. Restricted environment - only the configured variables are forwarded
"""
import subprocess
import threading
import time
from typing import Any, Dict, List, Optional, Sequence

from schema_gateway.core.exceptions import GatewayFailure, GatewayTimeout
from schema_gateway.core.logging_config import get_logger
from schema_gateway.gateway.protocol import (
    build_request,
    encode_request,
    parse_last_json_line,
    unwrap_payload,
)

logger = get_logger(__name__)

MAX_DIAGNOSTIC_CHARS = 4000


class QueryGateway:
    """
    Runs tools/call requests against a spawned executor.

    Example:
        >>> gateway = QueryGateway(["node", "runtime.js"], timeout_seconds=30)
        >>> payload = gateway.execute_query("SELECT Id FROM Account LIMIT 5")
        >>> payload["records"]
        [...]
    """

    def __init__(
        self,
        command: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        timeout_seconds: Optional[float] = 30.0,
        max_concurrent: int = 4,
        query_tool: str = "query",
        query_argument: str = "soql",
        describe_tool: str = "describe",
    ):
        """
        Initialize the gateway.

        Args:
            command: Argument vector of the executor process (no shell)
            env: Environment for the process; None inherits the parent environment
            timeout_seconds: Kill the process after this long; None disables the limit
            max_concurrent: Maximum executor processes alive at the same time
            query_tool: Tool name used by execute_query
            query_argument: Argument key carrying the query text
            describe_tool: Tool name used by describe
        """
        self.command: List[str] = list(command)
        self.env = dict(env) if env is not None else None
        self.timeout_seconds = timeout_seconds
        self.max_concurrent = max(1, int(max_concurrent))
        self.query_tool = query_tool
        self.query_argument = query_argument
        self.describe_tool = describe_tool
        self._slots = threading.BoundedSemaphore(self.max_concurrent)
        logger.info(
            f"QueryGateway initialized: command={self.command[:1]}, "
            f"timeout={timeout_seconds}s, max_concurrent={self.max_concurrent}"
        )

    def execute_query(self, query: str) -> Any:
        """Run a query through the executor's query tool."""
        logger.info(f"Executing query: {query[:100]}...")
        return self.call_tool(self.query_tool, {self.query_argument: query})

    def describe(self, object_name: str) -> Any:
        """Ask the executor to describe one object."""
        return self.call_tool(self.describe_tool, {"objectName": object_name})

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """
        Invoke one executor tool in a fresh process.

        Returns:
            The unwrapped payload of the last JSON line the process printed

        Raises:
            GatewayFailure: Spawn error, non-zero exit, executor error or no JSON output
            GatewayTimeout: The process did not exit within timeout_seconds
        """
        if not self.command:
            raise GatewayFailure(
                "No executor command configured",
                detail="Set EXECUTOR_COMMAND to the executor's argument vector",
            )

        request = build_request(name, arguments)
        request_id = request["id"]
        start_time = time.perf_counter()

        with self._slots:
            stdout, stderr, exit_code = self._run(encode_request(request), request_id)

        elapsed_ms = (time.perf_counter() - start_time) * 1000

        if exit_code != 0:
            logger.error(
                f"Executor exited with status {exit_code} "
                f"(id={request_id}, {elapsed_ms:.2f}ms): {stderr[:200]}"
            )
            raise GatewayFailure(
                f"Executor exited with status {exit_code}",
                detail=_truncate(stderr) or None,
                raw_output=stdout,
                exit_code=exit_code,
            )

        if stderr:
            logger.debug(f"Executor stderr (id={request_id}): {stderr[:200]}")

        response = parse_last_json_line(stdout)
        if response is None:
            logger.error(f"Executor produced no JSON response (id={request_id})")
            raise GatewayFailure(
                "Executor produced no JSON response",
                detail=_truncate(stderr) or _truncate(stdout) or None,
                raw_output=stdout,
                exit_code=exit_code,
            )

        if isinstance(response, dict) and response.get("id") not in (None, request_id):
            logger.warning(
                f"Executor response id {response.get('id')!r} does not match request {request_id}"
            )

        try:
            payload = unwrap_payload(response)
        except GatewayFailure as e:
            e.raw_output = stdout
            e.exit_code = exit_code
            logger.error(f"Executor reported an error (id={request_id}): {e.message}")
            raise

        logger.info(f"Tool '{name}' completed in {elapsed_ms:.2f}ms (id={request_id})")
        return payload

    def _run(self, request_line: bytes, request_id: str):
        try:
            process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self.env,
            )
        except OSError as e:
            logger.error(f"Failed to start executor {self.command[:1]}: {e}")
            raise GatewayFailure("Failed to start executor", detail=str(e))

        try:
            # communicate() writes the request, closes stdin and drains both pipes
            out, err = process.communicate(input=request_line, timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            process.kill()
            out, err = process.communicate()
            logger.error(
                f"Executor timed out after {self.timeout_seconds}s, killed (id={request_id})"
            )
            raise GatewayTimeout(self.timeout_seconds, raw_output=_decode(out))

        return _decode(out), _decode(err), process.returncode


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


def _truncate(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_DIAGNOSTIC_CHARS:
        return text[:MAX_DIAGNOSTIC_CHARS] + "..."
    return text
