# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Models

Pydantic models for workflow graphs, node runtime state and execution results.
"""

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NodeType(str, Enum):
    TRIGGER = "trigger"
    COMMAND = "command"
    CONDITION = "condition"
    DELAY = "delay"
    OUTPUT = "output"
    HTTP = "http"
    MCP = "mcp"
    AI = "ai"


class NodeStatus(str, Enum):
    """Per-execution node state. idle doubles as 'skipped' and 'aborted'."""
    IDLE = "idle"
    RUNNING = "running"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# Fields owned by the engine while a workflow executes
RUNTIME_FIELDS = frozenset({"status", "input", "output", "run_id", "error", "skipped"})

TRUE_LABELS = frozenset({"true", "yes"})
FALSE_LABELS = frozenset({"false", "no"})


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Node(BaseModel):
    """Workflow node: structure plus engine-owned runtime fields"""
    id: str = Field(default_factory=lambda: new_id("node"))
    type: NodeType
    label: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, float]] = None  # editor only

    # Runtime
    status: NodeStatus = NodeStatus.IDLE
    input: Any = None
    output: Any = None
    run_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def display_name(self) -> str:
        return self.label or self.id

    def reset_runtime(self) -> None:
        self.status = NodeStatus.IDLE
        self.input = None
        self.output = None
        self.run_id = None
        self.error = None
        self.skipped = False


class Connection(BaseModel):
    """Directed edge; label selects a condition branch"""
    model_config = ConfigDict(populate_by_name=True)  # Allow both 'from' and 'from_'

    id: str = Field(default_factory=lambda: new_id("conn"))
    from_: str = Field(alias="from")
    to: str
    label: Optional[str] = None

    @property
    def branch(self) -> Optional[bool]:
        """True/False for a branch label, None for an ordinary edge"""
        if self.label is None:
            return None
        label = str(self.label).strip().lower()
        if label in TRUE_LABELS:
            return True
        if label in FALSE_LABELS:
            return False
        return None


class Workflow(BaseModel):
    id: str = Field(default_factory=lambda: new_id("wf"))
    name: str
    description: str = ""
    enabled: bool = False
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    last_run_status: Optional[str] = None
    last_run_at: Optional[str] = None
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_nodes(self) -> List[Node]:
        return [n for n in self.nodes if n.type == NodeType.TRIGGER]

    def outgoing(self, node_id: str) -> List[Connection]:
        return [c for c in self.connections if c.from_ == node_id]

    def incoming(self, node_id: str) -> List[Connection]:
        return [c for c in self.connections if c.to == node_id]

    def event_names(self) -> List[str]:
        """Event names this workflow's event triggers listen for"""
        names = []
        for node in self.trigger_nodes():
            if node.config.get("triggerType") == "event" and node.config.get("eventName"):
                names.append(str(node.config["eventName"]))
        return names

    def dump(self) -> Dict[str, Any]:
        """Serialisable form using the 'from' edge key"""
        return self.model_dump(mode="json", by_alias=True)


class ExecutionLogEntry(BaseModel):
    timestamp: float = Field(default_factory=lambda: time.time() * 1000)
    workflow_id: str
    execution_id: Optional[str] = None
    node_id: Optional[str] = None
    node_label: Optional[str] = None
    level: LogLevel = LogLevel.INFO
    message: str
    input: Any = None
    output: Any = None
    error: Optional[str] = None


class WorkflowExecutionResult(BaseModel):
    """Returned by WorkflowEngine.execute"""
    success: bool
    status: str  # completed, completed_with_errors, aborted, error
    workflow_id: str
    execution_id: Optional[str] = None
    error: Optional[str] = None
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    node_states: Dict[str, str] = Field(default_factory=dict)
    trace: List[str] = Field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class WorkflowRunRequest(BaseModel):
    """Request body for running a workflow over HTTP"""
    input: Any = None
