# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for node executors (http / mcp / ai / output / delay)

External services are stubbed with httpx.MockTransport.
"""

import asyncio
import base64
import json

import httpx
import pytest
import pytest_asyncio

from cmdflow.ai_client import AIClient
from cmdflow.core.config import Config
from cmdflow.core.errors import CancellationError, ConfigurationError, InvocationError, MCPError
from cmdflow.workflow import Node, NodeTimeoutError, NodeType
from cmdflow.workflow.cancellation import CancellationToken
from cmdflow.workflow.nodes import NodeContext, NodeExecutor, is_branching

MCP_URL = "http://mcp.test/mcp"
AI_URL = "http://ai.test/v1/chat/completions"


class FakeServices:
    """Routes requests by host and records them"""

    def __init__(self):
        self.requests = []
        self.ai_content = '{"result": "ok"}'
        self.ai_delay = 0.0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host

        if host == "api.test":
            if request.url.path == "/missing":
                return httpx.Response(404, text="no such thing")
            body = json.loads(request.content) if request.content else None
            return httpx.Response(
                200,
                json={"data": {"items": [{"id": 1}, {"id": 2}]}, "echo": body, "auth": request.headers.get("Authorization")},
            )

        if host == "mcp.test":
            message = json.loads(request.content)
            if message.get("method") == "initialize":
                return httpx.Response(
                    200,
                    json={"jsonrpc": "2.0", "id": message["id"], "result": {"protocolVersion": "2025-06-18"}},
                    headers={"Mcp-Session-Id": "sess-1"},
                )
            if message.get("method") == "notifications/initialized":
                return httpx.Response(202)
            args = message["params"]["arguments"]
            if message["params"]["name"] == "broken":
                result = {"content": [{"type": "text", "text": "tool exploded"}], "isError": True}
            else:
                result = {"content": [{"type": "text", "text": json.dumps({"hosts": [args["target"]], "open": 2})}]}
            sse = f"event: message\ndata: {json.dumps({'jsonrpc': '2.0', 'id': message['id'], 'result': result})}\n\n"
            return httpx.Response(200, text=sse, headers={"Content-Type": "text/event-stream"})

        if host == "ai.test":
            if self.ai_delay:
                await asyncio.sleep(self.ai_delay)
            return httpx.Response(200, json={"choices": [{"message": {"content": self.ai_content}}]})

        return httpx.Response(500)


@pytest.fixture
def services():
    return FakeServices()


@pytest_asyncio.fixture
async def executor(registry, event_bus, services):
    client = httpx.AsyncClient(transport=httpx.MockTransport(services))
    config = Config(mcp_servers={"recon": MCP_URL}, ai_api_url=AI_URL, default_delay_seconds=0.01)
    executor = NodeExecutor(
        registry,
        config,
        event_bus=event_bus,
        http_client=client,
        ai_client=AIClient(api_url=AI_URL, api_key="sk-test", http_client=client),
    )
    yield executor
    await executor.aclose()
    await client.aclose()


@pytest.fixture
def ctx():
    return NodeContext(workflow_id="wf_test", execution_id="exec_test", token=CancellationToken())


def node(node_type, **config):
    return Node(id=f"{node_type}_1", type=node_type, label=f"{node_type} node", config=config)


# HTTP

@pytest.mark.asyncio
async def test_http_get_with_response_path(executor, ctx):
    output = await executor.execute(
        node(NodeType.HTTP, url="http://api.test/items/{{input.kind}}", responsePath="data.items[1].id"),
        {"kind": "hosts"},
        ctx,
    )
    assert output["_http"] is True
    assert output["status"] == 200
    assert output["method"] == "GET"
    assert output["url"] == "http://api.test/items/hosts"
    assert output["data"] == 2


@pytest.mark.asyncio
async def test_http_post_body_headers_and_bearer(executor, ctx, services):
    output = await executor.execute(
        node(
            NodeType.HTTP,
            method="post",
            url="http://api.test/submit",
            body={"name": "{{input.name}}"},
            headers=[{"key": "X-Trace", "value": "{{input.name}}"}],
            authType="bearer",
            authToken="tok",
        ),
        {"name": "ada"},
        ctx,
    )
    request = services.requests[-1]
    assert request.method == "POST"
    assert request.headers["X-Trace"] == "ada"
    assert request.headers["Content-Type"] == "application/json"
    assert output["data"]["echo"] == {"name": "ada"}
    assert output["data"]["auth"] == "Bearer tok"


@pytest.mark.asyncio
async def test_http_basic_and_api_key_auth(executor, ctx, services):
    await executor.execute(
        node(NodeType.HTTP, url="http://api.test/a", authType="basic", authUser="u", authPass="p"), None, ctx
    )
    assert services.requests[-1].headers["Authorization"] == "Basic " + base64.b64encode(b"u:p").decode()

    await executor.execute(
        node(NodeType.HTTP, url="http://api.test/a", authType="apikey", authToken="k", authHeaderName="X-Key"),
        None,
        ctx,
    )
    assert services.requests[-1].headers["X-Key"] == "k"


@pytest.mark.asyncio
async def test_http_error_status_raises(executor, ctx):
    with pytest.raises(InvocationError, match="HTTP 404 Not Found: no such thing"):
        await executor.execute(node(NodeType.HTTP, url="http://api.test/missing"), None, ctx)


@pytest.mark.asyncio
async def test_http_requires_url(executor, ctx):
    with pytest.raises(ConfigurationError):
        await executor.execute(node(NodeType.HTTP), None, ctx)


# MCP

@pytest.mark.asyncio
async def test_mcp_tool_call(executor, ctx, services):
    output = await executor.execute(
        node(NodeType.MCP, serverName="recon", toolName="scan", inputMapping='{"target": "{{input.host}}"}', outputPath="hosts[0]"),
        {"host": "10.0.0.5"},
        ctx,
    )
    assert output == {"_mcp": True, "server": "recon", "tool": "scan", "data": "10.0.0.5"}

    methods = [json.loads(r.content).get("method") for r in services.requests]
    assert methods == ["initialize", "notifications/initialized", "tools/call"]
    assert services.requests[-1].headers["Mcp-Session-Id"] == "sess-1"

    # Session is reused
    await executor.execute(node(NodeType.MCP, serverName="recon", toolName="scan", inputMapping={"target": "x"}), None, ctx)
    assert len(services.requests) == 4


@pytest.mark.asyncio
async def test_mcp_tool_error(executor, ctx):
    with pytest.raises(MCPError, match="tool exploded"):
        await executor.execute(node(NodeType.MCP, serverName="recon", toolName="broken"), None, ctx)


@pytest.mark.asyncio
async def test_mcp_unknown_server(executor, ctx):
    with pytest.raises(ConfigurationError, match="Unknown MCP server"):
        await executor.execute(node(NodeType.MCP, serverName="ghost", toolName="scan"), None, ctx)


# AI

@pytest.mark.asyncio
async def test_ai_transform_parses_json(executor, ctx, services):
    services.ai_content = '```json\n{"summary": "two hosts"}\n```'
    output = await executor.execute(node(NodeType.AI, prompt="Summarize {{input.kind}}"), {"kind": "scan"}, ctx)

    assert output["_ai"] is True
    assert output["mode"] == "transform"
    assert output["data"] == {"summary": "two hosts"}

    body = json.loads(services.requests[-1].content)
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][1]["content"].startswith("Summarize scan")
    assert services.requests[-1].headers["Authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_ai_decide_is_branching(executor, ctx, services):
    services.ai_content = '{"result": "yes", "reason": "critical port open"}'
    decide = node(NodeType.AI, prompt="Is this bad?", mode="decide")
    assert is_branching(decide)

    output = await executor.execute(decide, {"port": 22}, ctx)
    assert output["_condition"] is True
    assert output["result"] is True
    assert output["reason"] == "critical port open"


@pytest.mark.asyncio
async def test_ai_timeout(executor, ctx, services):
    services.ai_delay = 0.5
    with pytest.raises(NodeTimeoutError):
        await executor.execute(node(NodeType.AI, prompt="slow", timeout=0.05), None, ctx)


@pytest.mark.asyncio
async def test_ai_requires_prompt(executor, ctx):
    with pytest.raises(ConfigurationError):
        await executor.execute(node(NodeType.AI), None, ctx)


# output / delay / abort

@pytest.mark.asyncio
async def test_output_notify(registry, event_bus, ctx):
    notified = []
    events = []
    event_bus.on("notification:created", events.append)
    executor = NodeExecutor(registry, Config(), event_bus=event_bus, notifier=lambda message, data: notified.append(message))

    output = await executor.execute(node(NodeType.OUTPUT, action="notify", message="found {{input.count}}"), {"count": 3}, ctx)

    assert output["message"] == "found 3"
    assert output["action"] == "notify"
    assert notified == ["found 3"]
    assert events[0]["workflowId"] == "wf_test"


@pytest.mark.asyncio
async def test_output_without_message_stringifies_input(executor, ctx):
    output = await executor.execute(node(NodeType.OUTPUT), {"a": 1}, ctx)
    assert output["message"] == '{"a": 1}'
    assert output["rawInput"] == {"a": 1}


@pytest.mark.asyncio
async def test_delay_default_and_passthrough(executor, ctx):
    assert await executor.execute(node(NodeType.DELAY, seconds="soon"), "same", ctx) == "same"


@pytest.mark.asyncio
async def test_cancelled_token_interrupts_delay(executor, ctx):
    task = asyncio.create_task(executor.execute(node(NodeType.DELAY, seconds=5), None, ctx))
    await asyncio.sleep(0.01)
    ctx.token.cancel()
    with pytest.raises(CancellationError):
        await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_cancelled_token_refuses_new_work(executor, ctx):
    ctx.token.cancel()
    with pytest.raises(CancellationError):
        await executor.execute(node(NodeType.OUTPUT), None, ctx)
