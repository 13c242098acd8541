# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Command Run Tracker - durable, awaitable records of every invocation.

One CommandRun per invocation (one per stage for pipe chains). Runs are
kept in insertion order and evicted oldest-first once history exceeds the
configured limit; pending/running runs are never evicted.
"""

import asyncio
import json
import logging
import time
import uuid
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Set

from cmdflow.commands.models import (
    CommandRun,
    OutputType,
    RunSource,
    RunStatus,
    can_transition,
    classify_output,
)
from cmdflow.core.errors import NotFoundError
from cmdflow.event_bus import EventBus

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    return f"run_{uuid.uuid4().hex[:12]}"


class CommandRunTracker:
    """
    Owns the run history.

    Only the tracker mutates CommandRun records; everyone else reads them.
    """

    def __init__(self, event_bus: Optional[EventBus] = None, history_limit: Optional[int] = None):
        if history_limit is None:
            from cmdflow.core.config import get_config
            history_limit = get_config().run_history_limit

        self.event_bus = event_bus
        self.history_limit = max(1, history_limit)
        self._runs: "OrderedDict[str, CommandRun]" = OrderedDict()
        self._settled: Dict[str, asyncio.Event] = {}
        self._open_chains: Set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_run(
        self,
        command: str,
        path: str,
        args: Optional[List[Any]] = None,
        source: str = RunSource.HUMAN.value,
        chain_id: Optional[str] = None,
        chain_index: Optional[int] = None,
        chain_total: Optional[int] = None,
        parent_run_id: Optional[str] = None,
    ) -> CommandRun:
        """Open a pending run and add it to history"""
        run = CommandRun(
            id=new_run_id(),
            command=command,
            path=path,
            args=list(args or []),
            source=source,
            chain_id=chain_id,
            chain_index=chain_index,
            chain_total=chain_total,
            parent_run_id=parent_run_id,
        )
        self._runs[run.id] = run
        self._settled[run.id] = asyncio.Event()
        if chain_id:
            self._open_chains.add(chain_id)
        self._evict()

        logger.debug(f"Run {run.id} created for {path}", extra={"run_id": run.id, "path": path, "source": source})
        self._emit("run:created", run.summary())
        return run

    def mark_running(self, run_id: str, args: Optional[List[Any]] = None) -> CommandRun:
        run = self._require(run_id)
        if not self._advance(run, RunStatus.RUNNING):
            return run
        if args is not None:
            run.args = list(args)
        run.started_at = time.time() * 1000
        return run

    def resolve(self, run_id: str, output: Any = None) -> CommandRun:
        run = self._require(run_id)
        if not self._advance(run, RunStatus.RESOLVED):
            return run
        run.output = output
        run.output_type = classify_output(output)
        self._finish(run)

        logger.info(
            f"Run {run.id} resolved: {run.path}",
            extra={"run_id": run.id, "path": run.path, "duration_ms": run.duration},
        )
        self._emit("run:resolved", run.summary())
        return run

    def reject(self, run_id: str, error: Any, error_type: Optional[str] = None) -> CommandRun:
        """
        Settle a run as failed.

        Args:
            run_id: Run to reject
            error: Exception or message; stored as a display string
            error_type: Error class name, derived from error when it is an exception
        """
        run = self._require(run_id)
        if not self._advance(run, RunStatus.REJECTED):
            return run

        if isinstance(error, BaseException):
            error_type = error_type or error.__class__.__name__
            message = getattr(error, "message", None) or str(error) or error.__class__.__name__
        else:
            message = str(error)

        run.output = None
        run.output_type = OutputType.ERROR
        run.error = message
        run.error_type = error_type
        self._finish(run)

        logger.warning(
            f"Run {run.id} rejected: {run.path}: {message}",
            extra={"run_id": run.id, "path": run.path, "error_type": error_type},
        )
        self._emit("run:rejected", run.summary())
        return run

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_run(self, run_id: str) -> Optional[CommandRun]:
        return self._runs.get(run_id)

    def get_output(self, run_id: str) -> Any:
        """Output of a resolved run; None while pending/running or when rejected"""
        run = self._runs.get(run_id)
        if run is None or run.status != RunStatus.RESOLVED:
            return None
        return run.output

    async def await_run(self, run_id: str, timeout: Optional[float] = None) -> CommandRun:
        """
        Suspend until the run settles.

        Returns immediately for a run that already settled.

        Raises:
            NotFoundError: Unknown (or evicted) run id
            asyncio.TimeoutError: When timeout elapses first
        """
        run = self._require(run_id)
        if run.is_terminal:
            return run

        settled = self._settled[run_id]
        if timeout is None:
            await settled.wait()
        else:
            await asyncio.wait_for(settled.wait(), timeout=timeout)
        return run

    def get_history(self, limit: int = 20) -> List[CommandRun]:
        """Most recent runs first"""
        runs = list(reversed(self._runs.values()))
        return runs[:limit] if limit else runs

    def get_chain(self, chain_id: str) -> List[CommandRun]:
        stages = [r for r in self._runs.values() if r.chain_id == chain_id]
        return sorted(stages, key=lambda r: r.chain_index or 0)

    def get_by_status(self, status: Any) -> List[CommandRun]:
        status = RunStatus(status)
        return [r for r in self._runs.values() if r.status == status]

    def get_running(self) -> List[CommandRun]:
        return [r for r in self._runs.values() if not r.is_terminal]

    def search(self, query: str) -> List[CommandRun]:
        """Case-insensitive match on path, raw command text or output"""
        needle = (query or "").lower()
        if not needle:
            return []

        matches = []
        for run in reversed(self._runs.values()):
            haystacks = [run.path, run.command]
            if run.output is not None:
                haystacks.append(_searchable(run.output))
            if any(needle in h.lower() for h in haystacks):
                matches.append(run)
        return matches

    def get_stats(self) -> Dict[str, int]:
        stats = {status.value: 0 for status in RunStatus}
        for run in self._runs.values():
            stats[run.status.value] += 1
        stats["total"] = len(self._runs)
        return stats

    def close_chain(self, chain_id: str) -> None:
        """Mark a chain finished; its stages become evictable."""
        self._open_chains.discard(chain_id)
        self._evict()

    def clear(self) -> None:
        """Drop every settled run"""
        for run_id in [rid for rid, r in self._runs.items() if r.is_terminal]:
            self._drop(run_id)

    def __len__(self) -> int:
        return len(self._runs)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, run_id: str) -> CommandRun:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError("Run", run_id)
        return run

    def _advance(self, run: CommandRun, target: RunStatus) -> bool:
        if not can_transition(run.status, target):
            logger.warning(
                f"Ignoring transition {run.status.value} -> {target.value} for run {run.id}",
                extra={"run_id": run.id},
            )
            return False
        run.status = target
        return True

    def _finish(self, run: CommandRun) -> None:
        run.completed_at = time.time() * 1000
        start = run.started_at or run.created_at
        run.duration = round(run.completed_at - start, 3)
        settled = self._settled.get(run.id)
        if settled is not None:
            settled.set()
        self._evict()

    def _evict(self) -> None:
        overflow = len(self._runs) - self.history_limit
        if overflow <= 0:
            return
        evictable = [
            rid for rid, r in self._runs.items() if r.is_terminal and r.chain_id not in self._open_chains
        ]
        for run_id in evictable[:overflow]:
            self._drop(run_id)

    def _drop(self, run_id: str) -> None:
        self._runs.pop(run_id, None)
        self._settled.pop(run_id, None)

    def _emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_name, payload)


def _searchable(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)
