# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for WorkflowEngine scheduling, branching, joins and abort
"""

import asyncio

import pytest

from cmdflow.commands import RunSource
from cmdflow.core.config import Config
from cmdflow.workflow import NodeStatus, WorkflowEngine

from .helpers import build_workflow, wait_for_status


@pytest.fixture
def commands(registry):
    """Demo commands used as node bodies"""
    probe = {"active": 0, "max": 0}

    async def slow(tag="x"):
        probe["active"] += 1
        probe["max"] = max(probe["max"], probe["active"])
        await asyncio.sleep(0.02)
        probe["active"] -= 1
        return tag

    def fail(*args):
        raise RuntimeError("kaboom")

    registry.register("demo.say", lambda text="hi", *rest: text)
    registry.register("demo.slow", slow)
    registry.register("demo.fail", fail)
    registry.register("demo.quiet", lambda *args: None)
    return probe


def node_status(store, workflow_id, node_id):
    return store.get_workflow(workflow_id).get_node(node_id)


@pytest.mark.asyncio
async def test_command_delay_output_all_resolve(engine, store, commands, tracker):
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {"triggerType": "manual"}),
            ("cmd", "command", {"command": 'demo.say("hello")'}),
            ("wait", "delay", {"seconds": 0.05}),
            ("out", "output", {"action": "log", "message": "got {{input}}"}),
        ],
        [("t", "cmd"), ("cmd", "wait"), ("wait", "out")],
    )

    result = await engine.execute(wf.id)

    assert result.success
    assert result.status == "completed"
    assert result.trace == ["t", "cmd", "wait", "out"]
    assert set(result.node_states.values()) == {"resolved"}

    out = node_status(store, wf.id, "out")
    assert out.output["message"] == "got hello"
    assert node_status(store, wf.id, "wait").output == "hello"

    cmd = node_status(store, wf.id, "cmd")
    run = tracker.get_run(cmd.run_id)
    assert run.source == RunSource.WORKFLOW.value
    assert run.output == "hello"
    assert store.get_workflow(wf.id).last_run_status == "completed"


@pytest.mark.asyncio
async def test_manual_trigger_without_input(engine, store):
    wf = build_workflow(store, [("t", "trigger", {})], [])
    result = await engine.execute(wf.id)
    assert result.success
    output = node_status(store, wf.id, "t").output
    assert output["_trigger"] == "manual"
    assert "timestamp" in output


@pytest.mark.asyncio
async def test_trigger_input_flows_to_first_node(engine, store, commands):
    wf = build_workflow(
        store,
        [("t", "trigger", {}), ("cmd", "command", {"command": 'demo.say("{{input.name}}")'})],
        [("t", "cmd")],
    )
    await engine.execute(wf.id, trigger_input={"name": "ada"})
    assert node_status(store, wf.id, "cmd").output == "ada"


@pytest.mark.asyncio
async def test_command_without_output_reports_done(engine, store, commands):
    wf = build_workflow(store, [("t", "trigger", {}), ("q", "command", {"command": "demo.quiet()"})], [("t", "q")])
    await engine.execute(wf.id)
    assert node_status(store, wf.id, "q").output == "Done: demo.quiet()"


@pytest.mark.asyncio
async def test_failed_command_skips_downstream(engine, store, commands):
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {}),
            ("bad", "command", {"command": "demo.fail()"}),
            ("after", "output", {}),
            ("good", "command", {"command": 'demo.say("fine")'}),
        ],
        [("t", "bad"), ("bad", "after"), ("t", "good")],
    )

    result = await engine.execute(wf.id)

    assert not result.success
    assert result.status == "completed_with_errors"
    assert result.error == "kaboom"
    assert result.errors == [{"nodeId": "bad", "label": "bad", "error": "kaboom"}]
    assert result.node_states == {"t": "resolved", "bad": "rejected", "after": "idle", "good": "resolved"}

    after = node_status(store, wf.id, "after")
    assert after.skipped
    assert node_status(store, wf.id, "bad").error == "kaboom"
    assert store.get_workflow(wf.id).last_run_status == "completed_with_errors"


@pytest.mark.asyncio
async def test_unknown_command_rejects_node(engine, store):
    wf = build_workflow(store, [("t", "trigger", {}), ("c", "command", {"command": "no.such()"})], [("t", "c")])
    result = await engine.execute(wf.id)
    assert result.node_states["c"] == "rejected"
    assert "Unknown command: no.such" in result.error


@pytest.mark.asyncio
async def test_condition_takes_one_branch_with_original_input(engine, store):
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {}),
            ("check", "condition", {"field": "level", "operator": "equals", "value": "high"}),
            ("hi", "output", {}),
            ("lo", "output", {}),
            ("always", "output", {}),
        ],
        [("t", "check"), ("check", "hi", "true"), ("check", "lo", "no"), ("check", "always")],
    )

    result = await engine.execute(wf.id, trigger_input={"level": "high"})

    assert result.success
    assert result.node_states["hi"] == "resolved"
    assert result.node_states["lo"] == "idle"
    assert result.node_states["always"] == "resolved"
    assert node_status(store, wf.id, "lo").skipped
    assert node_status(store, wf.id, "hi").output["rawInput"] == {"level": "high"}
    assert node_status(store, wf.id, "check").output["result"] is True


@pytest.mark.asyncio
async def test_condition_false_branch(engine, store):
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {}),
            ("check", "condition", {"operator": "greaterThan", "value": 10}),
            ("big", "output", {}),
            ("small", "output", {}),
        ],
        [("t", "check"), ("check", "big", "yes"), ("check", "small", "false")],
    )
    result = await engine.execute(wf.id, trigger_input=3)
    assert result.node_states["big"] == "idle"
    assert result.node_states["small"] == "resolved"
    assert node_status(store, wf.id, "small").output["rawInput"] == 3


@pytest.mark.asyncio
async def test_join_waits_for_all_upstreams(engine, store, commands):
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {}),
            ("a", "command", {"command": 'demo.slow("A")'}),
            ("b", "command", {"command": 'demo.say("B")'}),
            ("join", "output", {}),
        ],
        [("t", "a"), ("t", "b"), ("a", "join"), ("b", "join")],
    )

    result = await engine.execute(wf.id)

    assert result.success
    assert result.trace.count("join") == 1
    assert result.trace[-1] == "join"
    assert node_status(store, wf.id, "join").output["rawInput"] == {"a": "A", "b": "B"}


@pytest.mark.asyncio
async def test_join_with_dead_branch_uses_live_input(engine, store, commands):
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {}),
            ("a", "command", {"command": 'demo.say("A")'}),
            ("b", "command", {"command": "demo.fail()"}),
            ("join", "output", {}),
        ],
        [("t", "a"), ("t", "b"), ("a", "join"), ("b", "join")],
    )

    result = await engine.execute(wf.id)

    assert result.node_states["join"] == "resolved"
    assert node_status(store, wf.id, "join").output["rawInput"] == "A"


@pytest.mark.asyncio
async def test_cycle_runs_each_node_once(engine, store, commands):
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {}),
            ("a", "command", {"command": 'demo.say("a")'}),
            ("b", "command", {"command": 'demo.say("b")'}),
        ],
        [("t", "a"), ("a", "b"), ("b", "a")],
    )
    result = await engine.execute(wf.id)
    assert result.trace == ["t", "a", "b"]


@pytest.mark.asyncio
async def test_parallel_fan_out_overlaps(engine, store, commands):
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {}),
            ("a", "command", {"command": 'demo.slow("a")'}),
            ("b", "command", {"command": 'demo.slow("b")'}),
        ],
        [("t", "a"), ("t", "b")],
    )
    await engine.execute(wf.id)
    assert commands["max"] == 2


@pytest.mark.asyncio
async def test_sequential_fan_out_is_breadth_first(store, registry, event_bus, commands):
    engine = WorkflowEngine(
        store, registry, event_bus=event_bus, config=Config(fan_out="sequential", default_delay_seconds=0.01)
    )
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {}),
            ("a", "command", {"command": 'demo.slow("a")'}),
            ("b", "command", {"command": 'demo.slow("b")'}),
            ("c", "command", {"command": 'demo.slow("c")'}),
        ],
        [("t", "a"), ("t", "b"), ("a", "c")],
    )
    result = await engine.execute(wf.id)
    assert result.trace == ["t", "a", "b", "c"]
    assert commands["max"] == 1


@pytest.mark.asyncio
async def test_repeat_runs_are_identical(engine, store, commands):
    wf = build_workflow(
        store,
        [
            ("t", "trigger", {}),
            ("check", "condition", {"operator": "exists"}),
            ("yes", "command", {"command": 'demo.say("y")'}),
            ("no", "command", {"command": 'demo.say("n")'}),
        ],
        [("t", "check"), ("check", "yes", "true"), ("check", "no", "false")],
    )
    first = await engine.execute(wf.id, trigger_input="x")
    second = await engine.execute(wf.id, trigger_input="x")
    assert first.trace == second.trace
    assert first.node_states == second.node_states
    assert first.execution_id != second.execution_id


@pytest.mark.asyncio
async def test_abort_during_delay_resets_nodes(engine, store, event_bus):
    aborted = []
    event_bus.on("workflow:aborted", aborted.append)
    wf = build_workflow(
        store,
        [("t", "trigger", {}), ("wait", "delay", {"seconds": 5}), ("out", "output", {})],
        [("t", "wait"), ("wait", "out")],
    )

    task = asyncio.create_task(engine.execute(wf.id))
    await wait_for_status(store, wf.id, "wait")
    assert engine.is_running(wf.id)
    assert engine.abort(wf.id)
    result = await asyncio.wait_for(task, timeout=1)

    assert result.status == "aborted"
    assert not result.success
    assert result.node_states == {"t": "resolved", "wait": "idle", "out": "idle"}
    assert node_status(store, wf.id, "wait").output is None
    assert not engine.is_running(wf.id)
    assert store.runtime_owner(wf.id) is None
    assert aborted and aborted[0]["workflowId"] == wf.id
    assert not engine.abort(wf.id)


@pytest.mark.asyncio
async def test_abort_cancels_running_command(engine, store, registry, tracker):
    started = asyncio.Event()

    async def hang():
        started.set()
        await asyncio.sleep(10)

    registry.register("demo.hang", hang)
    wf = build_workflow(store, [("t", "trigger", {}), ("h", "command", {"command": "demo.hang()"})], [("t", "h")])

    task = asyncio.create_task(engine.execute(wf.id))
    await started.wait()
    run_id = node_status(store, wf.id, "h").run_id
    engine.abort(wf.id)
    result = await asyncio.wait_for(task, timeout=1)

    assert result.node_states["h"] == "idle"
    await asyncio.sleep(0.01)
    assert tracker.get_run(run_id).error_type == "CancellationError"


@pytest.mark.asyncio
async def test_execute_while_running_aborts_previous(engine, store):
    wf = build_workflow(
        store,
        [("t", "trigger", {}), ("wait", "delay", {"seconds": 0.2})],
        [("t", "wait")],
    )
    first = asyncio.create_task(engine.execute(wf.id))
    await wait_for_status(store, wf.id, "wait")

    second = await engine.execute(wf.id)
    first_result = await first

    assert first_result.status == "aborted"
    assert second.status == "completed"
    assert second.node_states["wait"] == "resolved"


@pytest.mark.asyncio
async def test_cancelled_execute_releases_workflow(engine, store):
    wf = build_workflow(
        store,
        [("t", "trigger", {}), ("wait", "delay", {"seconds": 0.3}), ("out", "output", {})],
        [("t", "wait"), ("wait", "out")],
    )
    task = asyncio.create_task(engine.execute(wf.id))
    await wait_for_status(store, wf.id, "wait")
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not engine.is_running(wf.id)
    assert store.runtime_owner(wf.id) is None
    assert node_status(store, wf.id, "wait").status == NodeStatus.IDLE
    assert store.get_workflow(wf.id).last_run_status == "aborted"

    again = await asyncio.wait_for(engine.execute(wf.id), timeout=2)
    assert again.status == "completed"


@pytest.mark.asyncio
async def test_overlapping_executes_keep_latest_tracked(engine, store):
    wf = build_workflow(
        store,
        [("t", "trigger", {}), ("wait", "delay", {"seconds": 0.5})],
        [("t", "wait")],
    )
    first = asyncio.create_task(engine.execute(wf.id))
    await wait_for_status(store, wf.id, "wait")
    second = asyncio.create_task(engine.execute(wf.id))
    third = asyncio.create_task(engine.execute(wf.id))
    await asyncio.sleep(0.1)

    # The surviving execution is still tracked and abortable
    assert engine.is_running(wf.id)
    assert engine.abort(wf.id)

    results = await asyncio.wait_for(asyncio.gather(first, second, third), timeout=2)
    assert [r.status for r in results] == ["aborted", "aborted", "aborted"]
    assert not engine.is_running(wf.id)
    assert store.runtime_owner(wf.id) is None


@pytest.mark.asyncio
async def test_missing_workflow_and_missing_trigger(engine, store, event_bus):
    errors = []
    event_bus.on("workflow:error", errors.append)

    result = await engine.execute("wf_nope")
    assert not result.success
    assert result.status == "error"
    assert "not found" in result.error

    wf = build_workflow(store, [("out", "output", {})], [])
    result = await engine.execute(wf.id)
    assert result.status == "error"
    assert result.error == "Workflow has no trigger node"
    assert [e["workflowId"] for e in errors] == ["wf_nope", wf.id]


@pytest.mark.asyncio
async def test_lifecycle_events_and_logs(engine, store, event_bus):
    seen = []
    event_bus.on("workflow:started", lambda p: seen.append(("started", p["workflowId"])))
    event_bus.on("workflow:completed", lambda p: seen.append(("completed", p["status"])))
    wf = build_workflow(store, [("t", "trigger", {}), ("out", "output", {"message": "done"})], [("t", "out")])

    await engine.execute(wf.id)

    assert seen == [("started", wf.id), ("completed", "completed")]
    messages = [e.message for e in store.get_logs(wf.id)]
    assert messages[0] == 'Workflow "Test Workflow" started'
    assert messages[-1].startswith("Workflow completed in")
    assert all(e.execution_id for e in store.get_logs(wf.id))
