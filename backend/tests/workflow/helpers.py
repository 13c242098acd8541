# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow builders shared by the workflow tests
"""

import asyncio

from cmdflow.workflow import Connection, Node, NodeStatus, Workflow


def build_workflow(store, nodes, edges, name="Test Workflow", enabled=False):
    """
    Add a workflow to store.

    nodes: list of (id, type, config) tuples
    edges: list of (from, to) or (from, to, label) tuples
    """
    workflow = Workflow(
        name=name,
        enabled=enabled,
        nodes=[Node(id=node_id, type=node_type, label=node_id, config=config or {}) for node_id, node_type, config in nodes],
        connections=[
            Connection(from_=edge[0], to=edge[1], label=edge[2] if len(edge) > 2 else None)
            for edge in edges
        ],
    )
    return store.add_workflow(workflow)


async def wait_for_status(store, workflow_id, node_id, status=NodeStatus.RUNNING, timeout=2.0):
    """Poll until a node reaches status"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while store.get_workflow(workflow_id).get_node(node_id).status != status:
        if loop.time() > deadline:
            raise AssertionError(f"{node_id} never reached {status.value}")
        await asyncio.sleep(0.005)
