# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow API Routes

Handles workflow management and execution:
- CRUD operations for workflows, nodes and connections
- Execution, abort and execution logs
- Enable / disable (event trigger registration)
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from cmdflow.core.dependencies import get_workflow_engine, get_workflow_store
from cmdflow.core.errors import ConflictError, NotFoundError, ValidationError
from cmdflow.workflow.engine import WorkflowEngine
from cmdflow.workflow.models import NodeType, WorkflowExecutionResult, WorkflowRunRequest
from cmdflow.workflow.store import InMemoryWorkflowStore

router = APIRouter(prefix="/workflows", tags=["workflows"])


# Request Models
class WorkflowCreateRequest(BaseModel):
    name: str = "New Workflow"
    description: str = ""
    enabled: bool = False
    nodes: Optional[List[Dict[str, Any]]] = None
    connections: Optional[List[Dict[str, Any]]] = None


class WorkflowPatchRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: Optional[bool] = None


class NodeCreateRequest(BaseModel):
    type: NodeType
    label: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, float]] = None


class NodePatchRequest(BaseModel):
    label: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    position: Optional[Dict[str, float]] = None


class ConnectionCreateRequest(BaseModel):
    """Edge between two nodes; 'from' is accepted as the source key"""
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    label: Optional[str] = None


def _require(store: InMemoryWorkflowStore, workflow_id: str):
    try:
        return store.require_workflow(workflow_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# Workflow CRUD Routes
@router.get("")
async def list_workflows(
    store: InMemoryWorkflowStore = Depends(get_workflow_store),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> List[Dict[str, Any]]:
    """List all workflows with their run state"""
    return [
        {
            "id": wf.id,
            "name": wf.name,
            "description": wf.description,
            "enabled": wf.enabled,
            "nodes": len(wf.nodes),
            "events": wf.event_names(),
            "lastRunStatus": wf.last_run_status,
            "lastRunAt": wf.last_run_at,
            "running": engine.is_running(wf.id),
        }
        for wf in store.list_workflows()
    ]


@router.post("", status_code=201)
async def create_workflow(
    request: WorkflowCreateRequest,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, Any]:
    try:
        workflow = store.create_workflow(
            request.name,
            description=request.description,
            nodes=request.nodes,
            connections=request.connections,
            enabled=request.enabled,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return workflow.dump()


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: str,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, Any]:
    return _require(store, workflow_id).dump()


@router.patch("/{workflow_id}")
async def update_workflow(
    workflow_id: str,
    request: WorkflowPatchRequest,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, Any]:
    _require(store, workflow_id)
    workflow = store.update_workflow(workflow_id, request.model_dump(exclude_none=True))
    return workflow.dump()


@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: str,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, str]:
    try:
        deleted = store.delete_workflow(workflow_id)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Workflow not found: {workflow_id}")
    return {"status": "deleted", "id": workflow_id}


@router.post("/{workflow_id}/duplicate", status_code=201)
async def duplicate_workflow(
    workflow_id: str,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, Any]:
    _require(store, workflow_id)
    return store.duplicate_workflow(workflow_id).dump()


@router.post("/{workflow_id}/enable")
async def enable_workflow(
    workflow_id: str,
    store: InMemoryWorkflowStore = Depends(get_workflow_store),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> Dict[str, Any]:
    """Enable a workflow; its event triggers start listening"""
    _require(store, workflow_id)
    store.set_enabled(workflow_id, True)
    engine.refresh_listeners()
    return {"id": workflow_id, "enabled": True, "listeners": engine.listener_count}


@router.post("/{workflow_id}/disable")
async def disable_workflow(
    workflow_id: str,
    store: InMemoryWorkflowStore = Depends(get_workflow_store),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> Dict[str, Any]:
    _require(store, workflow_id)
    store.set_enabled(workflow_id, False)
    engine.refresh_listeners()
    return {"id": workflow_id, "enabled": False, "listeners": engine.listener_count}


# Nodes and connections
@router.post("/{workflow_id}/nodes", status_code=201)
async def add_node(
    workflow_id: str,
    request: NodeCreateRequest,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, Any]:
    _require(store, workflow_id)
    node = store.add_node(workflow_id, request.type, request.label, request.config, request.position)
    return node.model_dump(mode="json")


@router.patch("/{workflow_id}/nodes/{node_id}")
async def update_node(
    workflow_id: str,
    node_id: str,
    request: NodePatchRequest,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, Any]:
    try:
        node = store.update_node(workflow_id, node_id, request.model_dump(exclude_none=True))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return node.model_dump(mode="json")


@router.delete("/{workflow_id}/nodes/{node_id}")
async def delete_node(
    workflow_id: str,
    node_id: str,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, str]:
    _require(store, workflow_id)
    if not store.delete_node(workflow_id, node_id):
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    return {"status": "deleted", "id": node_id}


@router.post("/{workflow_id}/connections", status_code=201)
async def add_connection(
    workflow_id: str,
    request: ConnectionCreateRequest,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, Any]:
    _require(store, workflow_id)
    try:
        connection = store.add_connection(workflow_id, request.from_, request.to, request.label)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return connection.model_dump(mode="json", by_alias=True)


@router.delete("/{workflow_id}/connections/{connection_id}")
async def delete_connection(
    workflow_id: str,
    connection_id: str,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> Dict[str, str]:
    _require(store, workflow_id)
    if not store.delete_connection(workflow_id, connection_id):
        raise HTTPException(status_code=404, detail=f"Connection not found: {connection_id}")
    return {"status": "deleted", "id": connection_id}


# Workflow Execution Routes
@router.post("/{workflow_id}/execute", response_model=WorkflowExecutionResult)
async def execute_workflow(
    workflow_id: str,
    request: Optional[WorkflowRunRequest] = None,
    store: InMemoryWorkflowStore = Depends(get_workflow_store),
    engine: WorkflowEngine = Depends(get_workflow_engine)
):
    """Run a workflow to completion and return its result"""
    _require(store, workflow_id)
    return await engine.execute(workflow_id, trigger_input=request.input if request else None)


@router.post("/{workflow_id}/abort")
async def abort_workflow(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> Dict[str, Any]:
    return {"id": workflow_id, "aborted": engine.abort(workflow_id)}


@router.get("/{workflow_id}/logs")
async def get_workflow_logs(
    workflow_id: str,
    limit: Optional[int] = None,
    store: InMemoryWorkflowStore = Depends(get_workflow_store)
) -> List[Dict[str, Any]]:
    """Execution log of the latest run, oldest first"""
    _require(store, workflow_id)
    return [e.model_dump(mode="json") for e in store.get_logs(workflow_id, limit)]
