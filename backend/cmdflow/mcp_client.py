# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
MCP Client
Minimal streamable-HTTP MCP client used by workflow mcp nodes: initialize
handshake, per-endpoint session caching, and tools/call over JSON-RPC 2.0.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from cmdflow.core.errors import ConfigurationError, InvocationTimeoutError, MCPError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"
CLIENT_INFO = {"name": "cmdflow", "version": "1.0.0"}


def build_initialize_request(request_id: int, protocol_version: str = PROTOCOL_VERSION) -> Dict:
    """Build JSON-RPC initialize request"""
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "initialize",
        "params": {
            "protocolVersion": protocol_version,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        },
    }


def build_initialized_notification() -> Dict:
    """Build JSON-RPC initialized notification"""
    return {"jsonrpc": "2.0", "method": "notifications/initialized"}


def build_call_tool_request(request_id: int, tool_name: str, arguments: Dict) -> Dict:
    """Build JSON-RPC tools/call request"""
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": tool_name, "arguments": arguments},
    }


@dataclass
class MCPSession:
    endpoint: str
    protocol_version: str
    session_id: Optional[str] = None


def parse_sse_response(text: str) -> Dict:
    """
    Return the first JSON-RPC response (result or error) in an SSE body.

    Raises:
        MCPError: Stream holds no response message
    """
    data_buffer = []
    # Trailing blank line flushes the last event
    for line in text.split("\n") + [""]:
        line = line.rstrip("\r")
        if not line:
            if data_buffer:
                data = "\n".join(data_buffer)
                data_buffer = []
                try:
                    parsed = json.loads(data)
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to parse SSE data: {e}")
                    continue
                if isinstance(parsed, dict) and ("result" in parsed or "error" in parsed):
                    return parsed
            continue
        if line.startswith("data:"):
            data_buffer.append(line[5:].strip())

    raise MCPError("SSE stream ended without JSON-RPC response")


def extract_tool_result(result: Dict[str, Any]) -> Any:
    """
    Reduce a tools/call result to its payload.

    structuredContent wins; otherwise a single text block is JSON-decoded
    when possible, multiple text blocks are joined.

    Raises:
        MCPError: Tool reported isError
    """
    content = result.get("content") or []
    texts = [c.get("text", "") for c in content if isinstance(c, dict) and c.get("type") == "text"]

    if result.get("isError"):
        raise MCPError("\n".join(texts) or "Tool call failed")
    if result.get("structuredContent") is not None:
        return result["structuredContent"]
    if not texts:
        return result

    text = "\n".join(texts)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class MCPClient:
    """Talks to named MCP servers resolved from configuration"""

    def __init__(
        self,
        servers: Optional[Dict[str, str]] = None,
        timeout: float = 300.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.servers = dict(servers or {})
        self.timeout = timeout
        self._http = http_client
        self._owns_http = http_client is None
        self._sessions: Dict[str, MCPSession] = {}
        self._init_locks: Dict[str, asyncio.Lock] = {}
        self._ids = itertools.count(1)

    def resolve_endpoint(self, server: str) -> str:
        """Server name from config, or a literal http(s) URL"""
        if server in self.servers:
            return self.servers[server]
        if server.startswith(("http://", "https://")):
            return server
        raise ConfigurationError(f"Unknown MCP server: {server}")

    async def call_tool(self, server: str, tool_name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Call a tool and return the raw JSON-RPC result object.

        Raises:
            ConfigurationError: Unknown server
            MCPError: Transport or protocol failure
            InvocationTimeoutError: Request exceeded timeout
        """
        endpoint = self.resolve_endpoint(server)
        session = await self._get_or_initialize(endpoint)
        request = build_call_tool_request(next(self._ids), tool_name, arguments)

        logger.info(f"MCP tools/call {tool_name} on {server}")
        response = await self._post(endpoint, request, session)
        message = self._decode(response)

        if "error" in message:
            error = message["error"] or {}
            # Expired session: forget it so the next call re-initializes
            if response.status_code == 404:
                self._sessions.pop(endpoint, None)
            raise MCPError(f"Tool call error: {error.get('message', error)}", server_id=server)
        return message.get("result", {})

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None
        self._sessions.clear()

    async def _get_or_initialize(self, endpoint: str) -> MCPSession:
        if endpoint in self._sessions:
            return self._sessions[endpoint]

        lock = self._init_locks.setdefault(endpoint, asyncio.Lock())
        async with lock:
            if endpoint in self._sessions:
                return self._sessions[endpoint]
            return await self._initialize(endpoint)

    async def _initialize(self, endpoint: str) -> MCPSession:
        logger.info(f"Initializing MCP session for {endpoint}")
        response = await self._post(endpoint, build_initialize_request(next(self._ids)))
        message = self._decode(response)
        if "error" in message:
            error = message["error"] or {}
            raise MCPError(f"Initialize error: {error.get('message', 'Unknown error')}", server_id=endpoint)

        result = message.get("result", {})
        session = MCPSession(
            endpoint=endpoint,
            protocol_version=result.get("protocolVersion") or PROTOCOL_VERSION,
            session_id=response.headers.get("Mcp-Session-Id"),
        )

        notification = await self._post(endpoint, build_initialized_notification(), session)
        if notification.status_code not in (200, 202, 204):
            logger.warning(f"Initialized notification returned {notification.status_code}")

        self._sessions[endpoint] = session
        return session

    async def _post(self, endpoint: str, payload: Dict, session: Optional[MCPSession] = None) -> httpx.Response:
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
        }
        if session:
            headers["MCP-Protocol-Version"] = session.protocol_version
            if session.session_id:
                headers["Mcp-Session-Id"] = session.session_id

        if self._http is None:
            self._http = httpx.AsyncClient()
            self._owns_http = True

        try:
            return await self._http.post(endpoint, json=payload, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException:
            raise InvocationTimeoutError(f"MCP request to {endpoint} timed out", timeout=self.timeout)
        except httpx.HTTPError as e:
            raise MCPError(f"MCP request failed: {e}", server_id=endpoint)

    def _decode(self, response: httpx.Response) -> Dict:
        if response.status_code >= 400 and not response.content:
            raise MCPError(f"MCP server returned HTTP {response.status_code}")

        content_type = response.headers.get("Content-Type", "")
        if "text/event-stream" in content_type:
            return parse_sse_response(response.text)
        try:
            message = response.json()
        except ValueError:
            raise MCPError(f"MCP server returned non-JSON response (HTTP {response.status_code})")
        if not isinstance(message, dict):
            raise MCPError("MCP server returned a batch response")
        return message
