# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Graph Analysis

Derives the acyclic execution view of a (possibly cyclic) workflow graph:
edges into trigger nodes and back edges found by DFS from the triggers are
dropped, and only nodes reachable from a trigger take part in a run.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Set

from .models import Connection, Workflow


@dataclass
class ExecutionGraph:
    """Forward edges of one workflow execution, indexed both ways"""
    triggers: List[str]
    reachable: Set[str]
    outgoing: Dict[str, List[Connection]] = field(default_factory=dict)
    incoming: Dict[str, List[Connection]] = field(default_factory=dict)
    back_edges: Set[str] = field(default_factory=set)


def find_back_edges(workflow: Workflow, roots: List[str]) -> Set[str]:
    """
    Ids of connections closing a cycle, found by iterative DFS from roots.

    An edge is a back edge when its target is still on the DFS stack.
    """
    adjacency: Dict[str, List[Connection]] = {node.id: [] for node in workflow.nodes}
    for connection in workflow.connections:
        if connection.from_ in adjacency and connection.to in adjacency:
            adjacency[connection.from_].append(connection)

    back_edges: Set[str] = set()
    visited: Set[str] = set()
    on_stack: Set[str] = set()

    for root in roots:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(adjacency[root]))]

        while stack:
            node_id, edges = stack[-1]
            advanced = False
            for connection in edges:
                target = connection.to
                if target in on_stack:
                    back_edges.add(connection.id)
                elif target not in visited:
                    visited.add(target)
                    on_stack.add(target)
                    stack.append((target, iter(adjacency[target])))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                on_stack.discard(node_id)

    return back_edges


def build_execution_graph(workflow: Workflow) -> ExecutionGraph:
    """Forward edges reachable from the trigger nodes"""
    triggers = [node.id for node in workflow.trigger_nodes()]
    trigger_set = set(triggers)
    node_ids = {node.id for node in workflow.nodes}

    back_edges = find_back_edges(workflow, triggers)
    forward = [
        c for c in workflow.connections
        if c.id not in back_edges
        and c.to not in trigger_set
        and c.from_ in node_ids
        and c.to in node_ids
    ]

    outgoing: Dict[str, List[Connection]] = {node_id: [] for node_id in node_ids}
    for connection in forward:
        outgoing[connection.from_].append(connection)

    # BFS from every trigger
    reachable: Set[str] = set()
    queue = deque(triggers)
    while queue:
        node_id = queue.popleft()
        if node_id in reachable:
            continue
        reachable.add(node_id)
        queue.extend(c.to for c in outgoing[node_id])

    incoming: Dict[str, List[Connection]] = {node_id: [] for node_id in reachable}
    for connection in forward:
        if connection.from_ in reachable and connection.to in reachable:
            incoming[connection.to].append(connection)

    return ExecutionGraph(
        triggers=triggers,
        reachable=reachable,
        outgoing={nid: [c for c in outgoing[nid] if c.to in reachable] for nid in reachable},
        incoming=incoming,
        back_edges=back_edges,
    )


