# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine - graph interpretation over the command registry.
"""

from .cancellation import CancellationToken
from .engine import WorkflowEngine
from .exceptions import NodeExecutionError, NodeTimeoutError, WorkflowValidationError
from .models import (
    Connection,
    ExecutionLogEntry,
    LogLevel,
    Node,
    NodeStatus,
    NodeType,
    Workflow,
    WorkflowExecutionResult,
)
from .store import InMemoryWorkflowStore, WorkflowStore

__all__ = [
    "CancellationToken",
    "Connection",
    "ExecutionLogEntry",
    "InMemoryWorkflowStore",
    "LogLevel",
    "Node",
    "NodeExecutionError",
    "NodeStatus",
    "NodeTimeoutError",
    "NodeType",
    "Workflow",
    "WorkflowEngine",
    "WorkflowExecutionResult",
    "WorkflowStore",
    "WorkflowValidationError",
]
