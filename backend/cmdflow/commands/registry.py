# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Command Registry - path-addressed handlers and the invocation runtime.

execute() never blocks and never raises for a bad invocation: it returns a
CommandRunHandle straight away, and every failure (parse error, unknown
path, handler exception) ends up as a rejected CommandRun.
"""

import asyncio
import inspect
import uuid
from contextvars import ContextVar
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from cmdflow.commands.models import (
    Command,
    CommandCall,
    CommandMetadata,
    CommandRun,
    RunSource,
    RunStatus,
)
from cmdflow.commands.parser import CommandParseError, is_valid_path, parse_invocation
from cmdflow.commands.tracker import CommandRunTracker
from cmdflow.core.errors import CancellationError, ConfigurationError
from cmdflow.core.logging import get_service_logger
from cmdflow.event_bus import EventBus

logger = get_service_logger("commands")

# Run whose handler is executing in the current task; nested invocations link to it
current_run_id: ContextVar[Optional[str]] = ContextVar("cmdflow_current_run_id", default=None)


class CommandRunHandle:
    """
    Live view of one invocation, returned synchronously by execute().

    Awaiting the handle (or calling wait()) yields the final CommandRun of
    the chain: the stage that rejected, or the last stage.
    """

    def __init__(self, runs: Sequence[CommandRun], task: Optional[asyncio.Task] = None):
        self.runs: List[CommandRun] = list(runs)
        self._task = task

    @property
    def run_id(self) -> str:
        return self.runs[0].id

    @property
    def run_ids(self) -> List[str]:
        return [r.id for r in self.runs]

    @property
    def chain_id(self) -> Optional[str]:
        return self.runs[0].chain_id

    @property
    def final_run(self) -> CommandRun:
        for run in self.runs:
            if run.status == RunStatus.REJECTED:
                return run
        return self.runs[-1]

    @property
    def status(self) -> RunStatus:
        statuses = [r.status for r in self.runs]
        if RunStatus.REJECTED in statuses:
            return RunStatus.REJECTED
        if all(s == RunStatus.RESOLVED for s in statuses):
            return RunStatus.RESOLVED
        if RunStatus.RUNNING in statuses or RunStatus.RESOLVED in statuses:
            return RunStatus.RUNNING
        return RunStatus.PENDING

    @property
    def output(self) -> Any:
        last = self.runs[-1]
        return last.output if last.status == RunStatus.RESOLVED else None

    @property
    def error(self) -> Optional[str]:
        return self.final_run.error

    def done(self) -> bool:
        return self._task is None or self._task.done()

    async def wait(self) -> CommandRun:
        """Wait for the whole chain to settle. Cancelling the waiter does not cancel the chain."""
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self.final_run

    def cancel(self) -> bool:
        """Cancel the in-flight chain; the running stage is rejected, later stages stay pending"""
        if self._task is None or self._task.done():
            return False
        return self._task.cancel()

    def __await__(self):
        return self.wait().__await__()

    def __repr__(self) -> str:
        return f"<CommandRunHandle {self.run_id} {self.status.value}>"


class CommandRegistry:
    """Namespace of invocable commands (path -> handler + metadata)"""

    def __init__(self, tracker: CommandRunTracker, event_bus: Optional[EventBus] = None):
        self.tracker = tracker
        self.event_bus = event_bus
        self._commands: Dict[str, Command] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        path: str,
        handler: Callable[..., Any],
        metadata: Union[CommandMetadata, Dict[str, Any], str, None] = None,
    ) -> Command:
        """
        Add a command.

        Raises:
            ConfigurationError: Path already registered or not dot-notation
        """
        if not is_valid_path(path):
            raise ConfigurationError(f"Invalid command path: {path!r}")
        if path in self._commands:
            raise ConfigurationError(f"Command already registered: {path}")
        if not callable(handler):
            raise ConfigurationError(f"Handler for {path} is not callable")

        if isinstance(metadata, str):
            metadata = CommandMetadata(description=metadata)
        elif isinstance(metadata, dict):
            metadata = CommandMetadata(**metadata)

        command = Command(path=path, handler=handler, metadata=metadata or CommandMetadata())
        self._commands[path] = command
        logger.debug(f"Registered command {path}")
        return command

    def unregister(self, path: str) -> bool:
        return self._commands.pop(path, None) is not None

    def get(self, path: str) -> Optional[Command]:
        return self._commands.get(path)

    def has(self, path: str) -> bool:
        return path in self._commands

    def list_commands(self, namespace: Optional[str] = None) -> List[Command]:
        commands = sorted(self._commands.values(), key=lambda c: c.path)
        if namespace:
            commands = [c for c in commands if c.namespace == namespace or c.path.startswith(namespace + ".")]
        return commands

    def search(self, query: str) -> List[Command]:
        """Commands whose path or description contains query (case-insensitive)"""
        needle = (query or "").strip().lower()
        if not needle:
            return self.list_commands()
        return [
            c for c in self.list_commands()
            if needle in c.path.lower() or needle in c.description.lower()
        ]

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def execute(
        self,
        raw: str,
        source: Union[RunSource, str] = RunSource.HUMAN,
        parent_run_id: Optional[str] = None,
    ) -> CommandRunHandle:
        """
        Parse and start an invocation; returns before any handler runs.

        Must be called with a running event loop when the invocation is valid.
        """
        source = source.value if isinstance(source, RunSource) else str(source)
        parent_run_id = parent_run_id or current_run_id.get()

        try:
            calls = parse_invocation(raw)
        except CommandParseError as e:
            run = self.tracker.create_run(
                command=raw or "", path=(raw or "").strip(), source=source, parent_run_id=parent_run_id
            )
            self._fail(run, e)
            return CommandRunHandle([run])

        chain_id = f"chain_{uuid.uuid4().hex[:12]}" if len(calls) > 1 else None
        runs = [
            self.tracker.create_run(
                command=call.raw,
                path=call.path,
                args=list(call.args),
                source=source,
                chain_id=chain_id,
                chain_index=index if chain_id else None,
                chain_total=len(calls) if chain_id else None,
                parent_run_id=parent_run_id,
            )
            for index, call in enumerate(calls)
        ]

        # Unknown first stage fails synchronously
        if not self.has(calls[0].path):
            self._fail(runs[0], ConfigurationError(f"Unknown command: {calls[0].path}"))
            if chain_id:
                self.tracker.close_chain(chain_id)
            return CommandRunHandle(runs)

        task = asyncio.get_running_loop().create_task(self._run_chain(calls, runs))
        task.add_done_callback(lambda t: self._on_chain_done(t, runs))
        return CommandRunHandle(runs, task)

    async def invoke(self, raw: str, source: Union[RunSource, str] = RunSource.HUMAN) -> CommandRun:
        """Convenience: execute and wait for the final run"""
        return await self.execute(raw, source=source)

    async def _run_chain(self, calls: List[CommandCall], runs: List[CommandRun]) -> CommandRun:
        previous = None
        for index, (call, run) in enumerate(zip(calls, runs)):
            args = list(call.args)
            if index > 0:
                args.append(previous)

            ok, previous = await self._run_stage(call, run, args)
            if not ok:
                if index < len(calls) - 1:
                    logger.info(
                        f"Chain {run.chain_id} halted at stage {index + 1}/{len(calls)}",
                        extra={"chain_id": run.chain_id, "run_id": run.id},
                    )
                return run
        return runs[-1]

    async def _run_stage(self, call: CommandCall, run: CommandRun, args: List[Any]):
        command = self._commands.get(call.path)
        if command is None:
            self._fail(run, ConfigurationError(f"Unknown command: {call.path}"))
            return False, None

        self.tracker.mark_running(run.id, args=args)
        token = current_run_id.set(run.id)
        try:
            result = command.handler(*args)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(run, e)
            return False, None
        finally:
            current_run_id.reset(token)

        self.tracker.resolve(run.id, result)
        self._emit("command:executed", {"path": call.path, "args": args, "result": result, "runId": run.id})
        return True, result

    def _on_chain_done(self, task: asyncio.Task, runs: List[CommandRun]) -> None:
        if task.cancelled():
            for index, run in enumerate(runs):
                if run.is_terminal:
                    continue
                # The stage that was running, or stage 1 if the chain never started
                if run.status == RunStatus.RUNNING or index == 0:
                    self._fail(run, CancellationError("Command cancelled"))
                break
        elif task.exception() is not None:
            exc = task.exception()
            logger.error(f"Command chain crashed: {exc}", exc_info=exc)

        if runs[0].chain_id:
            self.tracker.close_chain(runs[0].chain_id)

    def _fail(self, run: CommandRun, error: Exception) -> None:
        self.tracker.reject(run.id, error)
        self._emit("command:error", {"raw": run.command, "path": run.path, "error": run.error, "runId": run.id})

    def _emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_name, payload)
