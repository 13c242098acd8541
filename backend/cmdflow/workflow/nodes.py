# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node Executors

One executor per node type. Each takes the node and its upstream input and
returns the node output, or raises. Every suspension goes through the
execution's CancellationToken so abort() can interrupt it.
"""

import asyncio
import base64
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from cmdflow.ai_client import AIClient, build_messages, parse_json_content
from cmdflow.commands.models import RunSource
from cmdflow.commands.registry import CommandRegistry
from cmdflow.core.config import Config
from cmdflow.core.errors import (
    CancellationError,
    ConfigurationError,
    InvocationError,
    InvocationTimeoutError,
)
from cmdflow.event_bus import EventBus
from cmdflow.mcp_client import MCPClient, extract_tool_result
from cmdflow.templates import render_mapping, render_template, resolve_path, stringify

from .cancellation import CancellationToken
from .conditions import evaluate_condition
from .exceptions import NodeExecutionError, NodeTimeoutError
from .models import Node, NodeType

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")
ERROR_BODY_PREVIEW = 200


@dataclass
class NodeContext:
    """Per-execution state shared by every node of one run"""
    workflow_id: str
    execution_id: str
    token: CancellationToken
    trigger_input: Any = None
    on_run_started: Optional[Callable[[str, str], None]] = None  # (node_id, run_id)


def is_branching(node: Node) -> bool:
    """Nodes whose output gates labeled branches"""
    if node.type == NodeType.CONDITION:
        return True
    return node.type == NodeType.AI and (node.config or {}).get("mode") == "decide"


def _now_ms() -> int:
    return int(time.time() * 1000)


class NodeExecutor:
    """Dispatches nodes by type"""

    def __init__(
        self,
        registry: CommandRegistry,
        config: Config,
        event_bus: Optional[EventBus] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        mcp_client: Optional[MCPClient] = None,
        ai_client: Optional[AIClient] = None,
        notifier: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
    ):
        self.registry = registry
        self.config = config
        self.event_bus = event_bus
        self.notifier = notifier
        self._http = http_client
        self._owns_http = http_client is None
        self.mcp = mcp_client or MCPClient(
            servers=config.mcp_servers, timeout=config.mcp_timeout, http_client=http_client
        )
        self.ai = ai_client or AIClient(
            api_url=config.ai_api_url,
            api_key=config.get_ai_api_key(),
            model=config.ai_model,
            temperature=config.ai_temperature,
            timeout=config.ai_timeout,
            http_client=http_client,
        )

    async def execute(self, node: Node, input_value: Any, ctx: NodeContext) -> Any:
        """
        Execute a single node - dispatches by node type.

        Raises:
            CancellationError: Execution aborted while the node was suspended
            CmdflowError subclasses: Node failed
        """
        ctx.token.raise_if_cancelled()
        node_type = node.type

        if node_type == NodeType.TRIGGER:
            return self._execute_trigger(node, input_value)
        elif node_type == NodeType.COMMAND:
            return await self._execute_command(node, input_value, ctx)
        elif node_type == NodeType.CONDITION:
            return evaluate_condition(node.config, input_value)
        elif node_type == NodeType.DELAY:
            return await self._execute_delay(node, input_value, ctx)
        elif node_type == NodeType.OUTPUT:
            return await self._execute_output(node, input_value, ctx)
        elif node_type == NodeType.HTTP:
            return await self._execute_http(node, input_value, ctx)
        elif node_type == NodeType.MCP:
            return await self._execute_mcp(node, input_value, ctx)
        elif node_type == NodeType.AI:
            return await self._execute_ai(node, input_value, ctx)
        else:
            raise ConfigurationError(f"Node type {node_type} not supported")

    async def aclose(self) -> None:
        await self.mcp.aclose()
        await self.ai.aclose()
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

    # ------------------------------------------------------------------
    # trigger / command / delay / output
    # ------------------------------------------------------------------

    def _execute_trigger(self, node: Node, input_value: Any) -> Any:
        cfg = node.config or {}
        trigger_type = cfg.get("triggerType") or "manual"

        if trigger_type == "event" and input_value is not None:
            event_name = cfg.get("eventName")
            if isinstance(input_value, dict):
                return {"_event": event_name, **input_value}
            return {"_event": event_name, "data": input_value}

        if input_value is not None:
            return input_value
        return {"_trigger": trigger_type, "timestamp": _now_ms()}

    async def _execute_command(self, node: Node, input_value: Any, ctx: NodeContext) -> Any:
        command = str((node.config or {}).get("command") or "").strip()
        if not command:
            raise ConfigurationError("No command configured")
        command = render_template(command, input_value)

        handle = self.registry.execute(command, source=RunSource.WORKFLOW)
        if ctx.on_run_started is not None:
            ctx.on_run_started(node.id, handle.run_id)

        try:
            run = await ctx.token.run(handle.wait())
        except CancellationError:
            handle.cancel()
            raise

        if run.error is not None:
            raise NodeExecutionError(node.id, run.error, context={"run_id": run.id})
        return run.output if run.output is not None else f"Done: {command}"

    async def _execute_delay(self, node: Node, input_value: Any, ctx: NodeContext) -> Any:
        raw = (node.config or {}).get("seconds")
        try:
            seconds = float(raw)
        except (TypeError, ValueError):
            seconds = 0.0
        if seconds <= 0:
            seconds = self.config.default_delay_seconds

        logger.debug(f"Delay node {node.id} sleeping {seconds:g}s")
        await ctx.token.sleep(seconds)
        # Delay passes its input through unchanged
        return input_value

    async def _execute_output(self, node: Node, input_value: Any, ctx: NodeContext) -> Dict[str, Any]:
        cfg = node.config or {}
        action = cfg.get("action") or "log"
        template = cfg.get("message")
        message = render_template(template, input_value) if template else (stringify(input_value) or "Workflow complete")

        if action == "notify":
            notification = {
                "title": node.label or "Workflow",
                "message": message,
                "workflowId": ctx.workflow_id,
                "nodeId": node.id,
            }
            if self.event_bus is not None:
                self.event_bus.emit("notification:created", notification)
            if self.notifier is not None:
                result = self.notifier(message, notification)
                if asyncio.iscoroutine(result):
                    await ctx.token.run(result)
        else:
            logger.info(f"[workflow {ctx.workflow_id}] {message}")

        return {
            "_output": True,
            "action": action,
            "message": message,
            "rawInput": input_value,
            "timestamp": _now_ms(),
        }

    # ------------------------------------------------------------------
    # External I/O: http / mcp / ai
    # ------------------------------------------------------------------

    async def _execute_http(self, node: Node, input_value: Any, ctx: NodeContext) -> Dict[str, Any]:
        cfg = node.config or {}
        method = str(cfg.get("method") or "GET").upper()
        url = render_template(cfg.get("url") or "", input_value)
        if not url:
            raise ConfigurationError("No URL configured")

        headers = self._build_headers(cfg, input_value)
        content = None
        if method in BODY_METHODS and cfg.get("body"):
            body = cfg["body"]
            if not isinstance(body, str):
                body = json.dumps(body)
            content = render_template(body, input_value)
            if not any(k.lower() == "content-type" for k in headers):
                headers["Content-Type"] = "application/json"

        timeout = _positive_float(cfg.get("timeout"), self.config.http_timeout)
        client = self._get_http()

        try:
            response = await ctx.token.run(
                client.request(method, url, headers=headers, content=content, timeout=timeout)
            )
        except httpx.TimeoutException:
            raise InvocationTimeoutError(f"HTTP request timed out after {timeout:g}s", timeout=timeout)
        except httpx.HTTPError as e:
            raise InvocationError(f"HTTP request failed: {e}")

        if "application/json" in response.headers.get("content-type", ""):
            try:
                body_value: Any = response.json()
            except ValueError:
                body_value = response.text
        else:
            body_value = response.text

        if response.is_error:
            preview = body_value if isinstance(body_value, str) else json.dumps(body_value)
            raise InvocationError(
                f"HTTP {response.status_code} {response.reason_phrase}: {preview[:ERROR_BODY_PREVIEW]}"
            )

        response_path = cfg.get("responsePath")
        if response_path and isinstance(body_value, (dict, list)):
            extracted = resolve_path(body_value, response_path)
            body_value = body_value if extracted is None else extracted

        return {
            "_http": True,
            "status": response.status_code,
            "statusText": response.reason_phrase,
            "url": url,
            "method": method,
            "data": body_value,
        }

    async def _execute_mcp(self, node: Node, input_value: Any, ctx: NodeContext) -> Dict[str, Any]:
        cfg = node.config or {}
        server = cfg.get("serverName")
        tool = cfg.get("toolName")
        if not server:
            raise ConfigurationError("No MCP server configured")
        if not tool:
            raise ConfigurationError("No MCP tool configured")

        mapping = cfg.get("inputMapping") or {}
        if isinstance(mapping, str):
            try:
                mapping = json.loads(mapping)
            except json.JSONDecodeError:
                mapping = {}
        if not isinstance(mapping, dict):
            mapping = {}
        arguments = {key: render_template(value, input_value) for key, value in mapping.items()}

        result = await self._with_timeout(
            node, ctx, self.mcp.call_tool(server, tool, arguments), cfg.get("timeout")
        )
        data = extract_tool_result(result)

        output_path = cfg.get("outputPath")
        if output_path and isinstance(data, (dict, list)):
            extracted = resolve_path(data, output_path)
            data = data if extracted is None else extracted

        return {"_mcp": True, "server": server, "tool": tool, "data": data}

    async def _execute_ai(self, node: Node, input_value: Any, ctx: NodeContext) -> Dict[str, Any]:
        cfg = node.config or {}
        prompt = cfg.get("prompt")
        if not prompt:
            raise ConfigurationError("No prompt configured")

        mode = cfg.get("mode") or "transform"
        model = cfg.get("model") or self.ai.model
        json_output = (cfg.get("outputFormat") or "json") == "json"
        temperature = cfg.get("temperature")

        content = await self._with_timeout(
            node,
            ctx,
            self.ai.complete(
                build_messages(render_template(prompt, input_value), input_value, mode, json_output),
                model=model,
                temperature=None if temperature is None else float(temperature),
                json_output=json_output,
                api_url=cfg.get("apiUrl"),
                api_key=cfg.get("apiKey"),
            ),
            cfg.get("timeout"),
        )
        parsed = parse_json_content(content) if json_output else content

        if mode == "decide":
            if isinstance(parsed, dict):
                result, reason = parsed.get("result"), parsed.get("reason")
            else:
                result, reason = "true" in str(parsed).lower(), content
            if isinstance(result, str):
                result = result.strip().lower() in ("true", "yes")
            return {
                "_condition": True,
                "_ai": True,
                "result": bool(result),
                "reason": reason,
                "model": model,
                "mode": mode,
            }

        return {"_ai": True, "mode": mode, "model": model, "data": parsed, "rawContent": content}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
            self._owns_http = True
        return self._http

    def _build_headers(self, cfg: Dict[str, Any], input_value: Any) -> Dict[str, str]:
        raw_headers = cfg.get("headers") or []
        headers: Dict[str, str] = {}
        if isinstance(raw_headers, dict):
            headers.update(render_mapping(raw_headers, input_value))
        else:
            for header in raw_headers:
                if isinstance(header, dict) and header.get("key"):
                    headers[render_template(header["key"], input_value)] = stringify(
                        render_template(header.get("value", ""), input_value)
                    )

        auth_type = cfg.get("authType")
        token = cfg.get("authToken")
        if auth_type == "bearer" and token:
            headers["Authorization"] = f"Bearer {token}"
        elif auth_type == "basic" and cfg.get("authUser"):
            credentials = f"{cfg['authUser']}:{cfg.get('authPass') or ''}".encode()
            headers["Authorization"] = f"Basic {base64.b64encode(credentials).decode()}"
        elif auth_type == "apikey" and token:
            headers[cfg.get("authHeaderName") or "X-API-Key"] = token
        return headers

    async def _with_timeout(self, node: Node, ctx: NodeContext, awaitable: Awaitable, timeout: Any) -> Any:
        """Race awaitable against abort and an optional per-node timeout"""
        seconds = _positive_float(timeout, None)
        if seconds is None:
            return await ctx.token.run(awaitable)
        try:
            return await ctx.token.run(asyncio.wait_for(awaitable, timeout=seconds))
        except asyncio.TimeoutError:
            raise NodeTimeoutError(node.id, seconds)


def _positive_float(value: Any, default: Optional[float]) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default
