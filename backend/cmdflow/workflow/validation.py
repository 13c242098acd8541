# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Validation

Structural checks for workflow graphs. Cycles are allowed: the engine
never re-enters a back edge, so only per-edge invariants are enforced here.
"""

from typing import Iterable, List, Optional

from .exceptions import WorkflowValidationError
from .models import Connection, NodeType, Workflow


def validate_workflow(workflow: Workflow) -> None:
    """
    Validate node ids and every connection.

    Raises WorkflowValidationError if validation fails.
    """
    # 1. Duplicate node IDs
    node_ids = [node.id for node in workflow.nodes]
    if len(node_ids) != len(set(node_ids)):
        duplicates = {nid for nid in node_ids if node_ids.count(nid) > 1}
        raise WorkflowValidationError(f"Duplicate node IDs found: {sorted(duplicates)}", field="nodes")

    # 2. Connections, checked as if added one by one
    accepted: List[Connection] = []
    for connection in workflow.connections:
        validate_connection(workflow, connection, accepted)
        accepted.append(connection)


def validate_connection(
    workflow: Workflow,
    connection: Connection,
    existing: Optional[Iterable[Connection]] = None,
) -> None:
    """
    Check one edge against the graph.

    Rules: both ends exist, no self-loop, at most one edge per ordered
    (from, to) pair, and a condition node has at most one outgoing edge
    per branch label.
    """
    existing = list(workflow.connections if existing is None else existing)
    node_ids = {node.id for node in workflow.nodes}

    if connection.from_ not in node_ids:
        raise WorkflowValidationError(f"Edge references non-existent node: {connection.from_}", field="connections")
    if connection.to not in node_ids:
        raise WorkflowValidationError(f"Edge references non-existent node: {connection.to}", field="connections")

    if connection.from_ == connection.to:
        raise WorkflowValidationError(
            f"Self-loop not allowed: {connection.from_} -> {connection.to}",
            field="connections"
        )

    for other in existing:
        if other.id == connection.id:
            continue
        if other.from_ == connection.from_ and other.to == connection.to:
            raise WorkflowValidationError(
                f"Duplicate connection: {connection.from_} -> {connection.to}",
                field="connections"
            )

    source = workflow.get_node(connection.from_)
    branch = connection.branch
    if source is not None and source.type == NodeType.CONDITION and branch is not None:
        for other in existing:
            if other.id != connection.id and other.from_ == connection.from_ and other.branch is branch:
                raise WorkflowValidationError(
                    f"Condition node '{source.id}' already has a '{str(branch).lower()}' branch",
                    field="connections"
                )
