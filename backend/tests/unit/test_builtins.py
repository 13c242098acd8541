# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the run.* and workflow.* built-in commands
"""

import pytest

from cmdflow.commands import register_builtin_commands
from cmdflow.workflow import NodeType


@pytest.fixture
def builtins(registry, tracker, engine, store):
    register_builtin_commands(registry, tracker, engine=engine, store=store)
    registry.register("demo.echo", lambda x="hi": x)
    registry.register("demo.boom", lambda: 1 / 0)
    return registry


@pytest.fixture
def greeting(store):
    """trigger -> command workflow"""
    wf = store.create_workflow("Greeting")
    trigger = wf.nodes[0]
    cmd = store.add_node(wf.id, NodeType.COMMAND, "Echo", {"command": 'demo.echo("hello")'})
    store.add_connection(wf.id, trigger.id, cmd.id)
    return wf


def test_run_only_when_no_engine(registry, tracker):
    register_builtin_commands(registry, tracker)
    assert registry.has("run.stats")
    assert not registry.has("workflow.run")


@pytest.mark.asyncio
async def test_run_stats_and_list(builtins):
    await builtins.invoke('demo.echo("a")')
    await builtins.invoke("demo.boom()")

    stats = await builtins.invoke("run.stats()")
    assert stats.output == "Runs: 3 total, 1 resolved, 1 rejected, 1 running, 0 pending"

    listing = await builtins.invoke("run.list(5)")
    assert "demo.boom" in listing.output
    assert "ERR: division by zero" in listing.output


@pytest.mark.asyncio
async def test_run_get_output_and_await(builtins):
    echo = await builtins.invoke('demo.echo("payload")')

    details = await builtins.invoke(f'run.get("{echo.id}")')
    assert f"Run: {echo.id}" in details.output
    assert "Status: resolved" in details.output

    output = await builtins.invoke(f'run.output("{echo.id}")')
    assert output.output == "payload"

    awaited = await builtins.invoke(f'run.await("{echo.id}")')
    assert awaited.output == "[resolved] demo.echo -> payload"

    missing = await builtins.invoke('run.get("run_missing")')
    assert missing.output == "Run not found: run_missing"

    usage = await builtins.invoke("run.get()")
    assert usage.output.startswith("Usage:")


@pytest.mark.asyncio
async def test_run_chain_search_and_failed(builtins):
    handle = builtins.execute('demo.echo("x") | demo.echo()')
    await handle

    chain = await builtins.invoke(f'run.chain("{handle.chain_id}")')
    assert chain.output.splitlines() == ["  1. [resolved] demo.echo -> x", "  2. [resolved] demo.echo -> x"]

    await builtins.invoke("demo.boom()")
    failed = await builtins.invoke("run.failed()")
    assert "division by zero" in failed.output

    found = await builtins.invoke('run.search("boom")')
    assert "demo.boom" in found.output


@pytest.mark.asyncio
async def test_run_running_lists_itself(builtins):
    running = await builtins.invoke("run.running()")
    assert "run.running" in running.output


@pytest.mark.asyncio
async def test_workflow_run_by_name(builtins, greeting, store):
    result = await builtins.invoke('workflow.run("greeting")')
    assert result.output == 'Workflow "Greeting" completed (completed)'
    assert store.get_workflow(greeting.id).last_run_status == "completed"


@pytest.mark.asyncio
async def test_workflow_list_get_and_logs(builtins, greeting):
    listing = await builtins.invoke("workflow.list()")
    assert "OFF Greeting" in listing.output

    details = await builtins.invoke(f'workflow.get("{greeting.id}")')
    assert "Workflow: Greeting" in details.output
    assert '-> demo.echo("hello")' in details.output

    await builtins.invoke(f'workflow.run("{greeting.id}")')
    logs = await builtins.invoke('workflow.logs("Greeting")')
    assert "[success]" in logs.output


@pytest.mark.asyncio
async def test_workflow_enable_disable(builtins, greeting, store):
    enabled = await builtins.invoke('workflow.enable("Greeting")')
    assert enabled.output == 'Enabled workflow "Greeting" - event triggers are now active'
    assert store.get_workflow(greeting.id).enabled

    disabled = await builtins.invoke('workflow.disable("Greeting")')
    assert disabled.output == 'Disabled workflow "Greeting" - event triggers are now inactive'
    assert not store.get_workflow(greeting.id).enabled


@pytest.mark.asyncio
async def test_workflow_abort_when_idle(builtins, greeting):
    result = await builtins.invoke(f'workflow.abort("{greeting.id}")')
    assert result.output == f"Workflow {greeting.id} is not running"


@pytest.mark.asyncio
async def test_workflow_create_duplicate_delete(builtins, store):
    created = await builtins.invoke('workflow.create("Scratch")')
    assert created.output.startswith('Created workflow "Scratch"')

    copy = await builtins.invoke('workflow.duplicate("Scratch")')
    assert '"Scratch (copy)"' in copy.output
    assert len(store.list_workflows()) == 2

    deleted = await builtins.invoke('workflow.delete("Scratch")')
    assert deleted.output == 'Deleted workflow "Scratch"'
    assert [wf.name for wf in store.list_workflows()] == ["Scratch (copy)"]


@pytest.mark.asyncio
async def test_workflow_not_found(builtins):
    result = await builtins.invoke('workflow.run("ghost")')
    assert result.output == "Workflow not found: ghost"
