# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for graph analysis and structural validation
"""

import pytest

from cmdflow.workflow.exceptions import WorkflowValidationError
from cmdflow.workflow.graph import build_execution_graph, find_back_edges
from cmdflow.workflow.models import Connection, Node, NodeType, Workflow
from cmdflow.workflow.validation import validate_connection, validate_workflow


def make_workflow(nodes, edges):
    """nodes: {id: type}; edges: [(from, to, label?)]"""
    return Workflow(
        name="graph",
        nodes=[Node(id=node_id, type=node_type) for node_id, node_type in nodes.items()],
        connections=[
            Connection(id=f"{e[0]}->{e[1]}", from_=e[0], to=e[1], label=e[2] if len(e) > 2 else None)
            for e in edges
        ],
    )


def test_linear_graph():
    wf = make_workflow(
        {"t": NodeType.TRIGGER, "a": NodeType.COMMAND, "b": NodeType.OUTPUT},
        [("t", "a"), ("a", "b")],
    )
    graph = build_execution_graph(wf)
    assert graph.triggers == ["t"]
    assert graph.reachable == {"t", "a", "b"}
    assert [c.to for c in graph.outgoing["t"]] == ["a"]
    assert [c.from_ for c in graph.incoming["b"]] == ["a"]
    assert graph.back_edges == set()


def test_cycle_back_edge_is_excluded():
    wf = make_workflow(
        {"t": NodeType.TRIGGER, "a": NodeType.COMMAND, "b": NodeType.COMMAND},
        [("t", "a"), ("a", "b"), ("b", "a")],
    )
    assert find_back_edges(wf, ["t"]) == {"b->a"}

    graph = build_execution_graph(wf)
    assert [c.from_ for c in graph.incoming["a"]] == ["t"]
    assert graph.outgoing["b"] == []


def test_edges_into_triggers_are_ignored():
    wf = make_workflow(
        {"t": NodeType.TRIGGER, "a": NodeType.COMMAND},
        [("t", "a"), ("a", "t")],
    )
    graph = build_execution_graph(wf)
    assert graph.incoming["t"] == []
    assert graph.outgoing["a"] == []


def test_unreachable_nodes_are_left_out():
    wf = make_workflow(
        {"t": NodeType.TRIGGER, "a": NodeType.COMMAND, "orphan": NodeType.COMMAND, "b": NodeType.OUTPUT},
        [("t", "a"), ("orphan", "b"), ("a", "b")],
    )
    graph = build_execution_graph(wf)
    assert "orphan" not in graph.reachable
    # Edge from an unreachable node must not hold b back
    assert [c.from_ for c in graph.incoming["b"]] == ["a"]


def test_connection_accepts_from_alias():
    conn = Connection.model_validate({"from": "a", "to": "b", "label": "Yes"})
    assert conn.from_ == "a"
    assert conn.branch is True
    assert Connection(from_="a", to="b", label="no").branch is False
    assert Connection(from_="a", to="b", label="other").branch is None


def test_validate_rejects_self_loop_and_unknown_nodes():
    wf = make_workflow({"t": NodeType.TRIGGER, "a": NodeType.COMMAND}, [])
    with pytest.raises(WorkflowValidationError, match="Self-loop"):
        validate_connection(wf, Connection(from_="a", to="a"))
    with pytest.raises(WorkflowValidationError, match="non-existent"):
        validate_connection(wf, Connection(from_="a", to="ghost"))


def test_validate_rejects_duplicate_pair():
    wf = make_workflow({"t": NodeType.TRIGGER, "a": NodeType.COMMAND}, [("t", "a")])
    with pytest.raises(WorkflowValidationError, match="Duplicate connection"):
        validate_connection(wf, Connection(from_="t", to="a"))


def test_validate_rejects_second_branch_with_same_label():
    wf = make_workflow(
        {"t": NodeType.TRIGGER, "c": NodeType.CONDITION, "x": NodeType.OUTPUT, "y": NodeType.OUTPUT},
        [("t", "c"), ("c", "x", "true")],
    )
    with pytest.raises(WorkflowValidationError, match="already has a 'true' branch"):
        validate_connection(wf, Connection(from_="c", to="y", label="yes"))
    validate_connection(wf, Connection(from_="c", to="y", label="false"))


def test_validate_workflow_duplicate_node_ids():
    wf = Workflow(name="dup", nodes=[Node(id="a", type=NodeType.TRIGGER), Node(id="a", type=NodeType.OUTPUT)])
    with pytest.raises(WorkflowValidationError, match="Duplicate node IDs"):
        validate_workflow(wf)


def test_validate_workflow_allows_cycles():
    wf = make_workflow(
        {"t": NodeType.TRIGGER, "a": NodeType.COMMAND, "b": NodeType.COMMAND},
        [("t", "a"), ("a", "b"), ("b", "a")],
    )
    validate_workflow(wf)
