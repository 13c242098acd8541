# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine

Interprets a workflow graph as a program:

1. Reset node runtime fields, seed every trigger node with the trigger input.
2. Each forward edge settles exactly once, as active (upstream resolved and,
   for branching nodes, the label matches) or dead.
3. A node becomes ready when all of its incoming forward edges have settled.
   It runs when at least one is active; otherwise it is skipped (stays idle)
   and its outgoing edges settle dead.
4. Ready nodes are issued together (fan_out="parallel") or one at a time in
   breadth-first order (fan_out="sequential").

A node failure only kills the edges leaving it, so sibling branches and
joins still supplied by another path carry on.
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

import httpx

from cmdflow.commands.registry import CommandRegistry
from cmdflow.core.config import Config, get_config
from cmdflow.core.errors import CancellationError, ConflictError, sanitize_error_for_user
from cmdflow.core.logging import get_service_logger, log_event
from cmdflow.event_bus import EventBus
from cmdflow.templates import stringify

from .cancellation import CancellationToken
from .graph import build_execution_graph
from .models import (
    Connection,
    ExecutionLogEntry,
    LogLevel,
    Node,
    NodeStatus,
    Workflow,
    WorkflowExecutionResult,
    now_iso,
)
from .nodes import NodeContext, NodeExecutor, is_branching
from .store import WorkflowStore

logger = get_service_logger("workflow")

STORE_EVENTS = ("workflow:created", "workflow:updated", "workflow:toggled", "workflow:deleted")
SUMMARY_LENGTH = 200

_RESOLVED = "resolved"
_REJECTED = "rejected"
_ABORTED = "aborted"


@dataclass
class ExecutionState:
    """Bookkeeping for one in-flight execution"""
    workflow_id: str
    execution_id: str
    token: CancellationToken
    started_at: float = field(default_factory=time.monotonic)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    trace: List[str] = field(default_factory=list)
    finished: asyncio.Event = field(default_factory=asyncio.Event)


def summarize(value: Any) -> Any:
    """Truncated copy of a value for log entries"""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= SUMMARY_LENGTH else value[:SUMMARY_LENGTH] + "..."
    text = stringify(value)
    return value if len(text) <= SUMMARY_LENGTH else text[:SUMMARY_LENGTH] + "..."


class WorkflowEngine:
    """Executes workflows held in a WorkflowStore"""

    def __init__(
        self,
        store: WorkflowStore,
        registry: CommandRegistry,
        event_bus: Optional[EventBus] = None,
        config: Optional[Config] = None,
        executor: Optional[NodeExecutor] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        notifier: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
    ):
        self.store = store
        self.registry = registry
        self.event_bus = event_bus
        self.config = config or get_config()
        self.fan_out = self.config.fan_out
        self.executor = executor or NodeExecutor(
            registry, self.config, event_bus=event_bus, http_client=http_client, notifier=notifier
        )

        self._running: Dict[str, ExecutionState] = {}
        self._subscriptions: List[Callable[[], None]] = []
        self._signature: Optional[str] = None
        self._store_watchers: List[Callable[[], None]] = []
        self._pending_triggers: Set[str] = set()
        self._trigger_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, workflow_id: str, trigger_input: Any = None) -> WorkflowExecutionResult:
        """
        Run a workflow to exhaustion.

        Never raises for workflow-level problems: a missing workflow, a
        workflow without trigger nodes or an engine crash come back as a
        result with success=False and status "error".
        """
        previous = self._running.get(workflow_id)
        while previous is not None:
            # Another caller may have started its own execution while we waited
            logger.info(f"Workflow {workflow_id} already running; aborting previous execution")
            self.abort(workflow_id)
            await previous.finished.wait()
            previous = self._running.get(workflow_id)

        workflow = self.store.get_workflow(workflow_id)
        if workflow is None:
            return self._fail_fast(workflow_id, f"Workflow not found: {workflow_id}")
        if not workflow.trigger_nodes():
            return self._fail_fast(workflow_id, "Workflow has no trigger node")

        state = ExecutionState(
            workflow_id=workflow_id,
            execution_id=f"exec_{uuid.uuid4().hex[:12]}",
            token=CancellationToken(),
        )
        try:
            self.store.acquire_runtime(workflow_id, state.execution_id)
        except ConflictError as e:
            return self._fail_fast(workflow_id, e.message)

        self._running[workflow_id] = state
        started_at = now_iso()
        cancelled: Optional[asyncio.CancelledError] = None
        error: Optional[str] = None

        try:
            try:
                self.store.clear_logs(workflow_id)
                self.store.reset_node_states(workflow_id, owner=state.execution_id)
                self.store.update_workflow(
                    workflow_id, {"last_run_status": "running", "last_run_at": started_at}, owner=state.execution_id
                )
                self._log(state, LogLevel.INFO, f'Workflow "{workflow.name}" started')
                log_event(logger, "workflow_started", workflow_id=workflow_id, execution_id=state.execution_id)
                self._emit("workflow:started", {"workflowId": workflow_id, "executionId": state.execution_id})

                # Structure is read once; runtime fields go through the store
                snapshot = workflow.model_copy(deep=True)
                await self._run_graph(snapshot, state, trigger_input)

                if state.token.cancelled:
                    status = "aborted"
                elif state.errors:
                    status = "completed_with_errors"
                else:
                    status = "completed"
            except asyncio.CancelledError as e:
                # The execute() task itself was cancelled; in-flight nodes were reset by _run_graph
                cancelled = e
                status = "aborted"
                state.token.cancel("Cancelled")
            except Exception as e:
                logger.error(f"Workflow {workflow_id} crashed: {e}", exc_info=True)
                status = "error"
                error = sanitize_error_for_user(e)
                state.token.cancel("Crashed")

            elapsed_ms = int((time.monotonic() - state.started_at) * 1000)
            self.store.update_workflow(workflow_id, {"last_run_status": status}, owner=state.execution_id)
            if status == "error":
                self._log(state, LogLevel.ERROR, f"Workflow crashed after {elapsed_ms}ms: {error}")
                self._emit("workflow:error", {"workflowId": workflow_id, "error": error})
            elif status == "aborted":
                self._log(state, LogLevel.WARNING, f"Workflow aborted after {elapsed_ms}ms")
            else:
                level = LogLevel.SUCCESS if status == "completed" else LogLevel.WARNING
                self._log(state, level, f"Workflow {status.replace('_', ' ')} in {elapsed_ms}ms")
                self._emit(
                    "workflow:completed",
                    {
                        "workflowId": workflow_id,
                        "executionId": state.execution_id,
                        "status": status,
                        "errors": list(state.errors),
                        "duration": elapsed_ms,
                    },
                )
        finally:
            self.store.release_runtime(workflow_id, state.execution_id)
            if self._running.get(workflow_id) is state:
                del self._running[workflow_id]
            state.finished.set()

        log_event(
            logger,
            "workflow_finished",
            workflow_id=workflow_id,
            execution_id=state.execution_id,
            status=status,
            duration_ms=elapsed_ms,
        )
        if cancelled is not None:
            raise cancelled

        current = self.store.get_workflow(workflow_id)
        return WorkflowExecutionResult(
            success=status == "completed",
            status=status,
            workflow_id=workflow_id,
            execution_id=state.execution_id,
            error=error or (state.errors[0]["error"] if state.errors else None),
            errors=list(state.errors),
            node_states={n.id: n.status.value for n in current.nodes} if current else {},
            trace=list(state.trace),
            started_at=started_at,
            completed_at=now_iso(),
        )

    def abort(self, workflow_id: str) -> bool:
        """
        Cancel the in-flight execution of a workflow.

        Suspended nodes (delays, command runs, requests) are interrupted and
        left idle along with every node that had not settled yet.
        """
        state = self._running.get(workflow_id)
        if state is None or state.token.cancelled:
            return False

        state.token.cancel("Aborted")
        self._log(state, LogLevel.WARNING, "Abort requested")
        log_event(logger, "workflow_aborted", workflow_id=workflow_id, execution_id=state.execution_id)
        self._emit("workflow:aborted", {"workflowId": workflow_id, "executionId": state.execution_id})
        return True

    def is_running(self, workflow_id: str) -> bool:
        return workflow_id in self._running

    def running_workflows(self) -> List[str]:
        return list(self._running)

    async def wait_idle(self) -> None:
        """Wait until no execution (including event-triggered ones) is in flight"""
        while self._running or self._trigger_tasks:
            waiters = [s.finished.wait() for s in list(self._running.values())]
            if self._trigger_tasks:
                await asyncio.gather(*list(self._trigger_tasks), return_exceptions=True)
            if waiters:
                await asyncio.gather(*waiters)

    # ------------------------------------------------------------------
    # Graph scheduling
    # ------------------------------------------------------------------

    async def _run_graph(self, workflow: Workflow, state: ExecutionState, trigger_input: Any) -> None:
        graph = build_execution_graph(workflow)
        nodes = {node.id: node for node in workflow.nodes}
        edge_active: Dict[str, bool] = {}
        edge_value: Dict[str, Any] = {}
        remaining = {node_id: len(graph.incoming[node_id]) for node_id in graph.reachable}

        ctx = NodeContext(
            workflow_id=state.workflow_id,
            execution_id=state.execution_id,
            token=state.token,
            trigger_input=trigger_input,
            on_run_started=lambda node_id, run_id: self._update_node(state, node_id, {"run_id": run_id}),
        )

        ready: Deque[Tuple[str, Any]] = deque((trigger_id, trigger_input) for trigger_id in graph.triggers)
        in_flight: Dict[asyncio.Task, Tuple[str, Any]] = {}
        parallel = self.fan_out == "parallel"

        def settle(connection: Connection, active: bool, value: Any) -> None:
            # Worklist instead of recursion so long skipped chains stay flat
            worklist = [(connection, active, value)]
            while worklist:
                conn, is_active, payload = worklist.pop()
                edge_active[conn.id] = is_active
                edge_value[conn.id] = payload
                remaining[conn.to] -= 1
                if remaining[conn.to] > 0:
                    continue

                incoming = [c for c in graph.incoming[conn.to] if edge_active.get(c.id)]
                if incoming:
                    if len(incoming) == 1:
                        node_input = edge_value[incoming[0].id]
                    else:
                        node_input = {c.from_: edge_value[c.id] for c in incoming}
                    ready.append((conn.to, node_input))
                else:
                    self._skip_node(state, nodes[conn.to])
                    worklist.extend((c, False, None) for c in graph.outgoing[conn.to])

        def propagate(node: Node, outcome: str, node_input: Any, output: Any) -> None:
            branching = is_branching(node)
            for conn in graph.outgoing[node.id]:
                if outcome != _RESOLVED:
                    settle(conn, False, None)
                elif branching:
                    branch = conn.branch
                    taken = bool(output.get("result")) if isinstance(output, dict) else bool(output)
                    # Branching nodes pass their ORIGINAL input downstream
                    settle(conn, branch is None or branch == taken, node_input)
                else:
                    settle(conn, True, output)

        try:
            while in_flight or (ready and not state.token.cancelled):
                while ready and not state.token.cancelled and (parallel or not in_flight):
                    node_id, node_input = ready.popleft()
                    task = asyncio.ensure_future(self._run_node(state, nodes[node_id], node_input, ctx))
                    in_flight[task] = (node_id, node_input)

                if not in_flight:
                    break

                done, _ = await asyncio.wait(set(in_flight), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    node_id, node_input = in_flight.pop(task)
                    outcome, output = task.result()
                    if outcome == _ABORTED or state.token.cancelled:
                        continue
                    propagate(nodes[node_id], outcome, node_input, output)
        finally:
            if in_flight:
                state.token.cancel("Crashed")
                await asyncio.gather(*in_flight, return_exceptions=True)

    async def _run_node(self, state: ExecutionState, node: Node, node_input: Any, ctx: NodeContext):
        state.trace.append(node.id)
        label = node.display_name
        self._update_node(state, node.id, {"status": NodeStatus.RUNNING, "input": node_input})
        self._log(
            state, LogLevel.INFO, f'-> [{node.type.value}] "{label}" started', node=node, input=summarize(node_input)
        )
        started = time.monotonic()

        try:
            output = await self.executor.execute(node, node_input, ctx)
        except CancellationError:
            self._reset_aborted(state, node)
            return _ABORTED, None
        except Exception as e:
            if state.token.cancelled:
                self._reset_aborted(state, node)
                return _ABORTED, None

            message = sanitize_error_for_user(e)
            elapsed = int((time.monotonic() - started) * 1000)
            self._update_node(state, node.id, {"status": NodeStatus.REJECTED, "error": message, "output": None})
            state.errors.append({"nodeId": node.id, "label": node.label, "error": message})
            self._log(
                state,
                LogLevel.ERROR,
                f'x [{node.type.value}] "{label}" failed ({elapsed}ms): {message}',
                node=node,
                error=message,
            )
            return _REJECTED, None

        if state.token.cancelled:
            # Late resolution after abort is discarded
            self._reset_aborted(state, node)
            return _ABORTED, None

        elapsed = int((time.monotonic() - started) * 1000)
        self._update_node(state, node.id, {"status": NodeStatus.RESOLVED, "output": output})
        self._log(
            state,
            LogLevel.SUCCESS,
            f'ok [{node.type.value}] "{label}" resolved ({elapsed}ms)',
            node=node,
            output=summarize(output),
        )
        return _RESOLVED, output

    def _skip_node(self, state: ExecutionState, node: Node) -> None:
        self._update_node(state, node.id, {"status": NodeStatus.IDLE, "skipped": True})
        self._log(state, LogLevel.INFO, f'[{node.type.value}] "{node.display_name}" skipped', node=node)

    def _reset_aborted(self, state: ExecutionState, node: Node) -> None:
        self._update_node(state, node.id, {"status": NodeStatus.IDLE, "output": None, "error": None})
        self._log(state, LogLevel.WARNING, f'[{node.type.value}] "{node.display_name}" aborted', node=node)

    # ------------------------------------------------------------------
    # Event triggers
    # ------------------------------------------------------------------

    def init_listeners(self) -> int:
        """
        Subscribe every enabled workflow's event triggers to the event bus.

        Replaces any existing subscriptions. Returns the subscription count.
        """
        self.stop_listeners()
        if self.event_bus is None:
            return 0

        for workflow in self.store.list_workflows():
            if not workflow.enabled:
                continue
            for event_name in workflow.event_names():
                handler = self._make_event_handler(workflow.id, event_name)
                self._subscriptions.append(self.event_bus.on(event_name, handler))
                logger.info(f"Workflow {workflow.id} listening for '{event_name}'")

        self._signature = self._workflow_signature()
        return len(self._subscriptions)

    def stop_listeners(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []
        self._signature = None

    def refresh_listeners(self) -> bool:
        """Re-derive subscriptions only if the workflow signature changed"""
        if self._signature is not None and self._workflow_signature() == self._signature:
            return False
        self.init_listeners()
        return True

    def watch_store(self) -> None:
        """Refresh listeners whenever workflows are created, edited, toggled or deleted"""
        if self.event_bus is None or self._store_watchers:
            return
        for event_name in STORE_EVENTS:
            self._store_watchers.append(self.event_bus.on(event_name, lambda _payload: self.refresh_listeners()))

    def unwatch_store(self) -> None:
        for unsubscribe in self._store_watchers:
            unsubscribe()
        self._store_watchers = []

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)

    def _workflow_signature(self) -> str:
        return "|".join(
            f"{wf.id}:{int(wf.enabled)}:{','.join(wf.event_names())}"
            for wf in self.store.list_workflows()
        )

    def _make_event_handler(self, workflow_id: str, event_name: str) -> Callable[[Any], None]:
        def handler(payload: Any) -> None:
            if self.is_running(workflow_id) or workflow_id in self._pending_triggers:
                logger.info(f"Skipping '{event_name}' trigger: workflow {workflow_id} already running")
                return
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(f"No running loop; '{event_name}' trigger for {workflow_id} dropped")
                return

            self._pending_triggers.add(workflow_id)
            task = loop.create_task(self._run_triggered(workflow_id, event_name, payload))
            self._trigger_tasks.add(task)
            task.add_done_callback(self._trigger_tasks.discard)

        return handler

    async def _run_triggered(self, workflow_id: str, event_name: str, payload: Any) -> None:
        try:
            log_event(logger, "workflow_event_trigger", workflow_id=workflow_id, event_name=event_name)
            await self.execute(workflow_id, trigger_input=payload)
        except Exception as e:
            logger.error(f"Event-triggered run of {workflow_id} failed: {e}", exc_info=True)
        finally:
            self._pending_triggers.discard(workflow_id)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        self.unwatch_store()
        self.stop_listeners()
        for workflow_id in list(self._running):
            self.abort(workflow_id)
        await self.wait_idle()
        await self.executor.aclose()

    # ------------------------------------------------------------------
    # Store / log helpers
    # ------------------------------------------------------------------

    def _update_node(self, state: ExecutionState, node_id: str, patch: Dict[str, Any]) -> None:
        self.store.update_node(state.workflow_id, node_id, patch, owner=state.execution_id)

    def _log(
        self,
        state: ExecutionState,
        level: LogLevel,
        message: str,
        node: Optional[Node] = None,
        input: Any = None,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        self.store.add_log(
            state.workflow_id,
            ExecutionLogEntry(
                workflow_id=state.workflow_id,
                execution_id=state.execution_id,
                node_id=node.id if node else None,
                node_label=node.label if node else None,
                level=level,
                message=message,
                input=input,
                output=output,
                error=error,
            ),
        )
        py_level = {LogLevel.ERROR: "ERROR", LogLevel.WARNING: "WARNING"}.get(level, "INFO")
        log_event(
            logger,
            message,
            level=py_level,
            workflow_id=state.workflow_id,
            execution_id=state.execution_id,
            node_id=node.id if node else None,
        )

    def _fail_fast(self, workflow_id: str, message: str) -> WorkflowExecutionResult:
        logger.warning(f"Workflow {workflow_id} not executed: {message}")
        if self.store.get_workflow(workflow_id) is not None:
            self.store.add_log(
                workflow_id,
                ExecutionLogEntry(workflow_id=workflow_id, level=LogLevel.ERROR, message=message),
            )
        self._emit("workflow:error", {"workflowId": workflow_id, "error": message})
        return WorkflowExecutionResult(success=False, status="error", workflow_id=workflow_id, error=message)

    def _emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_name, payload)
