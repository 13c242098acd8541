# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Event Bus - process-wide publish/subscribe channel.

Handlers are plain callables receiving the event payload. A handler that
returns a coroutine is scheduled on the running loop. A failing handler is
logged and never breaks the emitter.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


@dataclass(frozen=True)
class EventSpec:
    """Catalog entry for an event a workflow trigger can listen on"""
    name: str
    category: str
    description: str
    payload: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "payload": self.payload,
        }


_RUN_PAYLOAD = "{ runId, path, status, source, duration, chainId, error }"

# Events emitted by cmdflow itself
KNOWN_EVENTS: Tuple[EventSpec, ...] = (
    EventSpec("run:created", "Runs", "A command run was opened (pending)", _RUN_PAYLOAD),
    EventSpec("run:resolved", "Runs", "A command run finished successfully", _RUN_PAYLOAD),
    EventSpec("run:rejected", "Runs", "A command run failed or was cancelled", _RUN_PAYLOAD),
    EventSpec(
        "command:executed", "Commands", "A command handler returned a result", "{ path, args, result, runId }"
    ),
    EventSpec("command:error", "Commands", "A command invocation failed", "{ raw, path, error, runId }"),
    EventSpec("workflow:created", "Workflows", "A workflow was added to the store", "{ workflowId, name }"),
    EventSpec("workflow:updated", "Workflows", "A workflow's structure was edited", "{ workflowId }"),
    EventSpec("workflow:toggled", "Workflows", "A workflow was enabled or disabled", "{ workflowId, enabled }"),
    EventSpec("workflow:deleted", "Workflows", "A workflow was removed", "{ workflowId }"),
    EventSpec("workflow:started", "Workflows", "A workflow execution started", "{ workflowId, executionId }"),
    EventSpec(
        "workflow:completed",
        "Workflows",
        "A workflow execution ran to exhaustion (with or without node errors)",
        "{ workflowId, executionId, status, errors, duration }",
    ),
    EventSpec("workflow:aborted", "Workflows", "Abort was requested for a running workflow", "{ workflowId, executionId }"),
    EventSpec("workflow:error", "Workflows", "A workflow could not run or crashed", "{ workflowId, error }"),
    EventSpec(
        "notification:created",
        "Notifications",
        "An output node with action notify fired",
        "{ title, message, workflowId, nodeId }",
    ),
)


def known_event(name: str) -> Optional[EventSpec]:
    return next((spec for spec in KNOWN_EVENTS if spec.name == name), None)


class EventBus:
    """In-process event bus keyed by event name (e.g. "command:executed")"""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event_name: str, handler: Handler) -> Callable[[], None]:
        """Subscribe to an event. Returns an unsubscribe callable."""
        self._handlers.setdefault(event_name, []).append(handler)

        def unsubscribe() -> None:
            self.off(event_name, handler)

        return unsubscribe

    def off(self, event_name: str, handler: Handler) -> None:
        """Unsubscribe a handler; unknown handlers are ignored"""
        handlers = self._handlers.get(event_name)
        if not handlers:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._handlers[event_name]

    def emit(self, event_name: str, payload: Any = None) -> int:
        """
        Deliver payload to every subscriber of event_name.

        Returns:
            Number of handlers invoked
        """
        handlers = list(self._handlers.get(event_name, []))
        for handler in handlers:
            try:
                result = handler(payload)
            except Exception as e:
                logger.error(f"Error in '{event_name}' subscriber: {e}", exc_info=True)
                continue

            if inspect.iscoroutine(result):
                self._schedule(event_name, result)

        return len(handlers)

    def listener_count(self, event_name: str) -> int:
        return len(self._handlers.get(event_name, []))

    def clear(self) -> None:
        self._handlers.clear()

    def _schedule(self, event_name: str, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop for async '{event_name}' subscriber; dropped")
            coro.close()
            return

        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Async event subscriber failed: {exc}", exc_info=exc)
