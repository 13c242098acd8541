# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Built-in commands for inspecting runs and driving workflows.

Every handler returns a human-readable string so the commands work the same
from a prompt, a widget or a pipe chain.
"""

import json
import time
from typing import Any, Optional

from cmdflow.commands.models import CommandRun, OutputType, RunStatus
from cmdflow.commands.registry import CommandRegistry
from cmdflow.commands.tracker import CommandRunTracker
from cmdflow.core.errors import NotFoundError


def _fmt_output(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _summary_line(run: CommandRun) -> str:
    duration = f"{run.duration:g}ms" if run.duration is not None else "..."
    if run.output_type == OutputType.ERROR:
        out = f"ERR: {run.error}"
    elif run.output_type == OutputType.VOID:
        out = "void"
    elif run.output_type == OutputType.LIST:
        out = f"[{len(run.output)} items]"
    elif run.output_type == OutputType.OBJECT:
        out = "{...}"
    else:
        out = _fmt_output(run.output)[:60] if run.output is not None else ""
    return f"[{run.status.value}] {run.id} {run.path} ({duration}) -> {out}"


def register_run_commands(registry: CommandRegistry, tracker: CommandRunTracker) -> None:
    """run.* - inspection of the run history"""

    def run_get(run_id: Optional[str] = None) -> str:
        if not run_id:
            return 'Usage: run.get("run_xxx")'
        run = tracker.get_run(run_id)
        if run is None:
            return f"Run not found: {run_id}"
        lines = [
            f"Run: {run.id}",
            f"  Command: {run.command}",
            f"  Path: {run.path}",
            f"  Status: {run.status.value}",
            f"  Output Type: {run.output_type.value if run.output_type else '-'}",
            f"  Output: {_fmt_output(run.output)}",
            f"  Error: {run.error or '-'}",
            f"  Source: {run.source}",
            f"  Duration: {f'{run.duration:g}ms' if run.duration is not None else 'pending'}",
        ]
        if run.chain_id:
            lines.append(f"  Chain: {run.chain_id} [{(run.chain_index or 0) + 1}/{run.chain_total}]")
        if run.parent_run_id:
            lines.append(f"  Parent Run: {run.parent_run_id}")
        return "\n".join(lines)

    def run_output(run_id: Optional[str] = None) -> str:
        if not run_id:
            return 'Usage: run.output("run_xxx")'
        run = tracker.get_run(run_id)
        if run is None:
            return f"Run not found: {run_id}"
        if not run.is_terminal:
            return f"Run {run_id} is still {run.status.value}..."
        output = tracker.get_output(run_id)
        if output is None:
            return f"Run {run_id} has no output ({run.status.value})"
        return json.dumps(output, indent=2, default=str) if isinstance(output, (dict, list)) else str(output)

    async def run_await(run_id: Optional[str] = None) -> str:
        if not run_id:
            return 'Usage: run.await("run_xxx")'
        try:
            run = await tracker.await_run(run_id)
        except NotFoundError:
            return f"Run not found: {run_id}"
        result = run.output if run.status == RunStatus.RESOLVED else run.error
        return f"[{run.status.value}] {run.path} -> {_fmt_output(result)}"

    def run_list(limit: Any = 20) -> str:
        try:
            limit = int(limit) or 20
        except (TypeError, ValueError):
            limit = 20
        runs = tracker.get_history(limit)
        if not runs:
            return "No command runs recorded"
        return "\n".join(_summary_line(r) for r in runs)

    def run_chain(chain_id: Optional[str] = None) -> str:
        if not chain_id:
            return 'Usage: run.chain("chain_xxx")'
        runs = tracker.get_chain(chain_id)
        if not runs:
            return f"Chain not found: {chain_id}"
        lines = []
        for i, run in enumerate(runs, 1):
            out = f"ERR: {run.error}" if run.status == RunStatus.REJECTED else _fmt_output(run.output)[:60]
            lines.append(f"  {i}. [{run.status.value}] {run.path} -> {out}")
        return "\n".join(lines)

    def run_stats() -> str:
        s = tracker.get_stats()
        return (
            f"Runs: {s['total']} total, {s['resolved']} resolved, {s['rejected']} rejected, "
            f"{s['running']} running, {s['pending']} pending"
        )

    def run_search(query: Optional[str] = None) -> str:
        if not query:
            return 'Usage: run.search("query")'
        runs = tracker.search(str(query))
        if not runs:
            return f'No runs matching "{query}"'
        return "\n".join(
            f"[{r.status.value}] {r.id} {r.path} ({'...' if r.duration is None else f'{r.duration:g}'}ms)"
            for r in runs[:20]
        )

    def run_running() -> str:
        runs = tracker.get_by_status(RunStatus.RUNNING)
        if not runs:
            return "No commands currently running"
        now = time.time() * 1000
        return "\n".join(f"{r.id} {r.path} (started {int(now - (r.started_at or now))}ms ago)" for r in runs)

    def run_failed() -> str:
        runs = tracker.get_by_status(RunStatus.REJECTED)[-20:]
        if not runs:
            return "No failed runs"
        return "\n".join(f"{r.id} {r.path} -> {r.error}" for r in runs)

    registry.register("run.get", run_get, {"description": "Get full details of a command run by its run ID", "args": ["runId"]})
    registry.register("run.output", run_output, {"description": "Get just the output of a command run", "args": ["runId"]})
    registry.register("run.await", run_await, {"description": "Await a command run's completion and return its result", "args": ["runId"]})
    registry.register("run.list", run_list, {"description": "List recent command runs with status and output summary", "args": ["limit"]})
    registry.register("run.chain", run_chain, {"description": "Inspect all runs in a pipe chain by chain ID", "args": ["chainId"]})
    registry.register("run.stats", run_stats, "Get command execution statistics")
    registry.register("run.search", run_search, {"description": "Search command runs by command path or output content", "args": ["query"]})
    registry.register("run.running", run_running, "List commands currently in progress")
    registry.register("run.failed", run_failed, "List recently failed command runs")


def register_workflow_commands(registry: CommandRegistry, engine, store) -> None:
    """workflow.* - listing, toggling and running workflows by id or name"""

    def find(ref: Optional[str]):
        return store.find_workflow(str(ref)) if ref else None

    async def workflow_run(ref: Optional[str] = None) -> str:
        if not ref:
            return 'Usage: workflow.run("workflowId") or workflow.run("name")'
        wf = find(ref)
        if wf is None:
            return f"Workflow not found: {ref}"
        result = await engine.execute(wf.id)
        if result.success:
            return f'Workflow "{wf.name}" completed ({result.status})'
        return f'Workflow "{wf.name}" failed: {result.error or result.status}'

    def workflow_list() -> str:
        workflows = store.list_workflows()
        if not workflows:
            return "No workflows"
        lines = []
        for wf in workflows:
            status = f" [{wf.last_run_status}]" if wf.last_run_status else ""
            enabled = "ON " if wf.enabled else "OFF"
            events = ", ".join(wf.event_names())
            listening = f" listening: {events}" if events else ""
            lines.append(f"{enabled} {wf.name}{status} - {len(wf.nodes)} nodes{listening}  id={wf.id}")
        return "\n".join(lines)

    def workflow_get(ref: Optional[str] = None) -> str:
        if not ref:
            return 'Usage: workflow.get("id")'
        wf = find(ref)
        if wf is None:
            return f"Not found: {ref}"
        lines = [
            f"Workflow: {wf.name} ({wf.id})",
            f"  Nodes: {len(wf.nodes)}",
            f"  Connections: {len(wf.connections)}",
            f"  Last Run: {wf.last_run_status or 'never'}",
            "  Nodes:",
        ]
        for i, node in enumerate(wf.nodes, 1):
            command = f" -> {node.config['command']}" if node.config.get("command") else ""
            lines.append(f"    {i}. [{node.type.value}] {node.label}{command} ({node.status.value})")
        return "\n".join(lines)

    def set_enabled(ref: Optional[str], enabled: bool) -> str:
        verb = "enable" if enabled else "disable"
        if not ref:
            return f'Usage: workflow.{verb}("id or name")'
        wf = find(ref)
        if wf is None:
            return f"Not found: {ref}"
        store.set_enabled(wf.id, enabled)
        engine.refresh_listeners()
        state = "active" if enabled else "inactive"
        return f'{verb.capitalize()}d workflow "{wf.name}" - event triggers are now {state}'

    def workflow_abort(ref: Optional[str] = None) -> str:
        if not ref:
            return 'Usage: workflow.abort("id")'
        wf = find(ref)
        workflow_id = wf.id if wf else str(ref)
        if engine.abort(workflow_id):
            return f"Aborted workflow {workflow_id}"
        return f"Workflow {workflow_id} is not running"

    def workflow_logs(ref: Optional[str] = None, limit: Any = 50) -> str:
        if not ref:
            return 'Usage: workflow.logs("id", limit)'
        wf = find(ref)
        if wf is None:
            return f"Not found: {ref}"
        try:
            limit = int(limit) or 50
        except (TypeError, ValueError):
            limit = 50
        entries = store.get_logs(wf.id, limit)
        if not entries:
            return f'No logs for "{wf.name}"'
        return "\n".join(f"[{e.level.value}] {e.message}" for e in entries)

    def workflow_create(name: Optional[str] = None) -> str:
        wf = store.create_workflow(name or "New Workflow")
        return f'Created workflow "{wf.name}" ({wf.id})'

    def workflow_delete(ref: Optional[str] = None) -> str:
        if not ref:
            return 'Usage: workflow.delete("id")'
        wf = find(ref)
        if wf is None:
            return f"Not found: {ref}"
        store.delete_workflow(wf.id)
        return f'Deleted workflow "{wf.name}"'

    def workflow_duplicate(ref: Optional[str] = None) -> str:
        if not ref:
            return 'Usage: workflow.duplicate("id")'
        wf = find(ref)
        if wf is None:
            return f"Not found: {ref}"
        copy = store.duplicate_workflow(wf.id)
        return f'Duplicated -> "{copy.name}" ({copy.id})'

    registry.register("workflow.run", workflow_run, {"description": "Execute a workflow by ID or name", "args": ["idOrName"]})
    registry.register("workflow.list", workflow_list, "List all workflows with enabled/disabled status")
    registry.register("workflow.get", workflow_get, {"description": "Get details of a workflow", "args": ["idOrName"]})
    registry.register(
        "workflow.enable",
        lambda ref=None: set_enabled(ref, True),
        {"description": "Enable a workflow (registers event triggers)", "args": ["idOrName"]},
    )
    registry.register(
        "workflow.disable",
        lambda ref=None: set_enabled(ref, False),
        {"description": "Disable a workflow (unregisters event triggers)", "args": ["idOrName"]},
    )
    registry.register("workflow.abort", workflow_abort, {"description": "Abort a running workflow", "args": ["idOrName"]})
    registry.register("workflow.logs", workflow_logs, {"description": "Show the execution log of a workflow", "args": ["idOrName", "limit"]})
    registry.register("workflow.create", workflow_create, {"description": "Create a workflow with a manual trigger", "args": ["name"]})
    registry.register("workflow.delete", workflow_delete, {"description": "Delete a workflow", "args": ["idOrName"]})
    registry.register("workflow.duplicate", workflow_duplicate, {"description": "Duplicate a workflow", "args": ["idOrName"]})


def register_builtin_commands(registry: CommandRegistry, tracker: CommandRunTracker, engine=None, store=None) -> None:
    """Register run.* always, workflow.* when an engine and store are given"""
    register_run_commands(registry, tracker)
    if engine is not None and store is not None:
        register_workflow_commands(registry, engine, store)
