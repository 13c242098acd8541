# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Exceptions

Workflow-specific members of the cmdflow error taxonomy.
"""

from typing import Optional

from cmdflow.core.errors import InvocationError, InvocationTimeoutError, ValidationError


class WorkflowValidationError(ValidationError):
    """Workflow definition or edit is structurally invalid"""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field=field)


class NodeExecutionError(InvocationError):
    """Node execution failed"""
    def __init__(self, node_id: str, message: str, context: Optional[dict] = None):
        self.node_id = node_id
        self.context = context or {}
        super().__init__(message, details={"node_id": node_id, **self.context})


class NodeTimeoutError(InvocationTimeoutError):
    """Node execution exceeded its timeout"""
    def __init__(self, node_id: str, timeout: float):
        super().__init__(
            f"Node '{node_id}' exceeded timeout ({timeout:g}s)",
            timeout=timeout,
            details={"node_id": node_id},
        )
        self.node_id = node_id
