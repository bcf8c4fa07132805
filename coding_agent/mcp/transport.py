"""
MCP transports: newline-delimited JSON-RPC over a subprocess's stdio, and
Streamable HTTP via httpx.

Both expose the same async surface to the client:
``start()``, ``request(message, timeout)``, ``notify(message)``, ``close()``.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
from typing import Any, Optional

import httpx

from .types import (
    McpAuthConfig, McpConfigError, McpServerConfig, McpTimeoutError,
    McpTransportError, sanitize_error,
)

logger = logging.getLogger(__name__)

# Largest single JSON-RPC line accepted from a stdio server
MAX_LINE_BYTES = 16 * 1024 * 1024
MAX_CONSECUTIVE_PARSE_ERRORS = 10

# Only these (plus the server's configured env) reach MCP subprocesses
_SAFE_ENV_VARS = {
    "PATH", "HOME", "USER", "LOGNAME", "SHELL", "TERM",
    "LANG", "LC_ALL", "LC_CTYPE", "TZ",
    "TMPDIR", "TEMP", "TMP",
    "SYSTEMROOT", "COMSPEC", "APPDATA", "LOCALAPPDATA", "USERPROFILE",
    "NODE_PATH", "NODE_ENV", "PYTHONPATH",
    "XDG_CONFIG_HOME", "XDG_DATA_HOME", "XDG_CACHE_HOME",
}


def create_safe_env(custom_env: Optional[dict[str, str]] = None) -> dict[str, str]:
    safe = {k: v for k, v in os.environ.items() if k in _SAFE_ENV_VARS}
    if custom_env:
        safe.update({k: str(v) for k, v in custom_env.items()})
    return safe


def build_auth_headers(auth: Optional[McpAuthConfig]) -> dict[str, str]:
    if auth is None:
        return {}
    if auth.type == "bearer":
        if not auth.token:
            raise McpConfigError("Invalid config: bearer auth requires a token")
        return {"Authorization": f"Bearer {auth.token}"}
    if auth.type == "basic":
        raw = f"{auth.username or ''}:{auth.password or ''}".encode("utf-8")
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}
    raise McpConfigError(f"Invalid config: unsupported MCP auth type '{auth.type}'")


def create_transport(config: McpServerConfig):
    """Build the transport described by ``config``. Exactly one of command/url must be set."""
    if config.command and config.url:
        raise McpConfigError("Invalid config: MCP server config must not set both command and url.")
    if config.command:
        return StdioTransport(config.command, config.args, config.env, config.cwd)
    if config.url:
        headers = dict(config.headers)
        headers.update(build_auth_headers(config.auth))
        return HttpTransport(config.url, headers)
    raise McpConfigError("MCP server config must include command or url.")


# ── Stdio ────────────────────────────────────────────────────────


class StdioTransport:
    """
    Talk to an MCP server over a child process's stdin/stdout.

    A reader task routes each response to the future waiting on its id.
    """

    def __init__(
        self,
        command: str,
        args: Optional[list[str]] = None,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        self.command = command
        self.args = list(args or [])
        self.env = env
        self.cwd = cwd
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.Task] = None
        self._stderr_reader: Optional[asyncio.Task] = None
        self._pending: dict[Any, asyncio.Future] = {}
        self._parse_errors = 0

    @property
    def is_connected(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        if self._process is not None:
            return
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command, *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=create_safe_env(self.env),
                cwd=self.cwd,
                limit=MAX_LINE_BYTES,
            )
        except FileNotFoundError:
            raise McpTransportError(
                f"Command not found: {self.command}. Make sure the MCP server is installed."
            )
        except OSError as e:
            raise McpTransportError(f"Failed to start MCP server: {sanitize_error(str(e))}")

        self._reader = asyncio.create_task(self._read_loop())
        self._stderr_reader = asyncio.create_task(self._drain_stderr())

    async def request(self, message: dict, timeout: float) -> dict:
        if not self.is_connected:
            raise McpTransportError("Transport not connected")
        future = asyncio.get_running_loop().create_future()
        self._pending[message["id"]] = future
        try:
            await self._write(message)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise McpTimeoutError(
                f"MCP request '{message.get('method')}' timed out after {timeout}s"
            )
        finally:
            self._pending.pop(message["id"], None)

    async def notify(self, message: dict) -> None:
        await self._write(message)

    async def _write(self, message: dict) -> None:
        assert self._process is not None and self._process.stdin is not None
        try:
            self._process.stdin.write((json.dumps(message) + "\n").encode("utf-8"))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError, OSError) as e:
            raise McpTransportError(f"Failed to send message: {sanitize_error(str(e))}")

    async def _read_loop(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        error: Optional[Exception] = None
        try:
            while True:
                line = await self._process.stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    msg = json.loads(text)
                except json.JSONDecodeError:
                    self._parse_errors += 1
                    logger.debug(f"MCP stdio: non-JSON line from {self.command}: {text[:200]}")
                    if self._parse_errors >= MAX_CONSECUTIVE_PARSE_ERRORS:
                        error = McpTransportError(
                            f"Too many consecutive JSON parse errors from {self.command}"
                        )
                        break
                    continue
                self._parse_errors = 0
                self._dispatch(msg)
        except (asyncio.LimitOverrunError, ValueError) as e:
            error = McpTransportError(f"Reader error: {sanitize_error(str(e))}")
        finally:
            self._fail_pending(error or McpTransportError("MCP server closed the connection"))

    def _dispatch(self, msg: dict) -> None:
        if "id" in msg and ("result" in msg or "error" in msg):
            future = self._pending.get(msg["id"])
            if future is not None and not future.done():
                future.set_result(msg)
            else:
                logger.debug(f"MCP stdio: unmatched response id {msg.get('id')}")
        elif "method" in msg:
            logger.debug(f"MCP notification from {self.command}: {msg.get('method')}")

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        while True:
            line = await self._process.stderr.readline()
            if not line:
                return
            logger.debug(f"[{self.command}] {line.decode('utf-8', errors='replace').rstrip()}")

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)

    async def close(self) -> None:
        process, self._process = self._process, None
        for task in (self._reader, self._stderr_reader):
            if task is not None:
                task.cancel()
        self._fail_pending(McpTransportError("Transport closed"))
        if process is None:
            return
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()


# ── Streamable HTTP ──────────────────────────────────────────────


class HttpTransport:
    """
    Communicate with an MCP server via HTTP POST (Streamable HTTP).

    Each JSON-RPC message is one POST. The server answers with either a
    JSON body or an SSE stream carrying the response. Session tracking via
    the ``Mcp-Session-Id`` header.
    """

    def __init__(self, url: str, headers: Optional[dict[str, str]] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.headers = dict(headers or {})
        self._client = client
        self._session_id: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)

    def _request_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        headers.update(self.headers)
        if self._session_id:
            headers["Mcp-Session-Id"] = self._session_id
        return headers

    async def _post(self, message: dict, timeout: float) -> httpx.Response:
        if self._client is None:
            raise McpTransportError("Transport not connected")
        try:
            response = await self._client.post(
                self.url, json=message, headers=self._request_headers(), timeout=timeout,
            )
        except httpx.TimeoutException:
            raise McpTimeoutError(f"Connection timeout after {timeout}s")
        except httpx.HTTPError as e:
            raise McpTransportError(f"Network error: {sanitize_error(str(e))}")

        session_id = response.headers.get("Mcp-Session-Id")
        if session_id:
            self._session_id = session_id

        if response.status_code == 404 and self._session_id:
            self._session_id = None
            raise McpTransportError("MCP session expired (HTTP 404). Reconnection needed.")
        if response.status_code >= 400:
            raise McpTransportError(f"HTTP {response.status_code}: {response.reason_phrase}")
        return response

    async def request(self, message: dict, timeout: float) -> dict:
        response = await self._post(message, timeout)
        content_type = response.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            return self._response_from_sse(response.text, message["id"])
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise McpTransportError(f"Invalid JSON response: {e}")

    async def notify(self, message: dict) -> None:
        await self._post(message, timeout=10)

    @staticmethod
    def _response_from_sse(body: str, request_id: Any) -> dict:
        """Pick the JSON-RPC response for ``request_id`` out of an SSE body."""
        data_lines: list[str] = []
        events: list[str] = []
        for line in body.splitlines():
            if line.startswith("data:"):
                data_lines.append(line[5:].lstrip())
            elif not line.strip() and data_lines:
                events.append("\n".join(data_lines))
                data_lines = []
        if data_lines:
            events.append("\n".join(data_lines))

        for payload in events:
            try:
                msg = json.loads(payload)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("id") == request_id:
                return msg
        raise McpTransportError(f"No response for request {request_id} in event stream")

    async def close(self) -> None:
        client, self._client = self._client, None
        self._session_id = None
        if client is not None:
            await client.aclose()
