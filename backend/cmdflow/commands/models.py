# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Command Models - registrations, parsed calls and tracked runs
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Lifecycle of a CommandRun. Transitions only move forward."""
    PENDING = "pending"
    RUNNING = "running"
    RESOLVED = "resolved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.RESOLVED, RunStatus.REJECTED)


_STATUS_ORDER = {
    RunStatus.PENDING: 0,
    RunStatus.RUNNING: 1,
    RunStatus.RESOLVED: 2,
    RunStatus.REJECTED: 2,
}


def can_transition(current: RunStatus, target: RunStatus) -> bool:
    """True when moving current -> target never regresses"""
    if current.is_terminal:
        return False
    return _STATUS_ORDER[target] > _STATUS_ORDER[current]


class OutputType(str, Enum):
    STRING = "string"
    OBJECT = "object"
    LIST = "list"
    VOID = "void"
    ERROR = "error"


class RunSource(str, Enum):
    """Who asked for the invocation"""
    HUMAN = "human"
    WIDGET = "widget"
    SCHEDULER = "scheduler"
    WORKFLOW = "workflow"
    API = "api"


def classify_output(value: Any) -> OutputType:
    if value is None:
        return OutputType.VOID
    if isinstance(value, (str, int, float, bool)):
        return OutputType.STRING
    if isinstance(value, (list, tuple, set)):
        return OutputType.LIST
    return OutputType.OBJECT


class CommandMetadata(BaseModel):
    """Human-facing description of a command"""
    description: str = ""
    widget: Optional[str] = None
    args: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class Command:
    """A registered command. Never mutated after registration."""
    path: str
    handler: Callable[..., Any]
    metadata: CommandMetadata = field(default_factory=CommandMetadata)

    @property
    def namespace(self) -> str:
        return self.path.rsplit(".", 1)[0]

    @property
    def description(self) -> str:
        return self.metadata.description


@dataclass(frozen=True)
class CommandCall:
    """One parsed stage of an invocation: `ns.path(arg, ...)`"""
    path: str
    args: Tuple[Any, ...] = ()
    raw: str = ""


def _now_ms() -> float:
    return time.time() * 1000


class CommandRun(BaseModel):
    """
    Durable record of one command invocation.

    Mutated only by CommandRunTracker; frozen in practice once terminal.
    """
    id: str
    command: str
    path: str
    args: List[Any] = Field(default_factory=list)
    status: RunStatus = RunStatus.PENDING
    output: Any = None
    output_type: Optional[OutputType] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    source: str = RunSource.HUMAN.value
    created_at: float = Field(default_factory=_now_ms)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    duration: Optional[float] = None  # ms
    chain_id: Optional[str] = None
    chain_index: Optional[int] = None
    chain_total: Optional[int] = None
    parent_run_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def summary(self) -> dict:
        """Compact dict for event payloads and listings"""
        return {
            "runId": self.id,
            "path": self.path,
            "status": self.status.value,
            "source": self.source,
            "duration": self.duration,
            "chainId": self.chain_id,
            "error": self.error,
        }
