# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Store

Holds workflow graphs and their execution logs. The engine only ever goes
through this interface to read structure and write node runtime fields.

Single-writer convention: while a workflow is held via acquire_runtime(),
runtime-field writes from anyone but the holder raise ConflictError.
"""

import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Protocol, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from cmdflow.core.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from cmdflow.event_bus import EventBus

from .models import (
    RUNTIME_FIELDS,
    Connection,
    ExecutionLogEntry,
    Node,
    NodeStatus,
    NodeType,
    Workflow,
    new_id,
    now_iso,
)
from .validation import validate_connection, validate_workflow

logger = logging.getLogger(__name__)

_NODE_STRUCTURE_FIELDS = {"type", "label", "config", "position"}
_WORKFLOW_FIELDS = {"name", "description", "enabled"}
_WORKFLOW_RUNTIME_FIELDS = {"last_run_status", "last_run_at"}


class WorkflowStore(Protocol):
    """What the engine consumes"""

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]: ...

    def list_workflows(self) -> List[Workflow]: ...

    def update_node(
        self, workflow_id: str, node_id: str, patch: Dict[str, Any], owner: Optional[str] = None
    ) -> Node: ...

    def update_workflow(
        self, workflow_id: str, patch: Dict[str, Any], owner: Optional[str] = None
    ) -> Workflow: ...

    def reset_node_states(self, workflow_id: str, owner: Optional[str] = None) -> None: ...

    def add_log(self, workflow_id: str, entry: ExecutionLogEntry) -> None: ...

    def clear_logs(self, workflow_id: str) -> None: ...

    def get_logs(self, workflow_id: str, limit: Optional[int] = None) -> List[ExecutionLogEntry]: ...

    def acquire_runtime(self, workflow_id: str, owner: str) -> None: ...

    def release_runtime(self, workflow_id: str, owner: str) -> None: ...


class InMemoryWorkflowStore:
    """Reference WorkflowStore keeping everything in process memory"""

    def __init__(self, event_bus: Optional[EventBus] = None, log_limit: Optional[int] = None):
        if log_limit is None:
            from cmdflow.core.config import get_config
            log_limit = get_config().workflow_log_limit

        self.event_bus = event_bus
        self.log_limit = max(1, log_limit)
        self._workflows: Dict[str, Workflow] = {}
        self._logs: Dict[str, Deque[ExecutionLogEntry]] = {}
        self._owners: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)

    def require_workflow(self, workflow_id: str) -> Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    def find_workflow(self, ref: str) -> Optional[Workflow]:
        """Look up by id, then by case-insensitive name"""
        if ref in self._workflows:
            return self._workflows[ref]
        needle = (ref or "").strip().lower()
        for workflow in self._workflows.values():
            if workflow.name.lower() == needle:
                return workflow
        return None

    def list_workflows(self) -> List[Workflow]:
        return list(self._workflows.values())

    def create_workflow(
        self,
        name: str,
        description: str = "",
        nodes: Optional[List[Union[Node, Dict[str, Any]]]] = None,
        connections: Optional[List[Union[Connection, Dict[str, Any]]]] = None,
        enabled: bool = False,
    ) -> Workflow:
        """Create a workflow; an empty graph gets a manual trigger node"""
        if nodes is None:
            nodes = [Node(type=NodeType.TRIGGER, label="Manual Trigger", config={"triggerType": "manual"})]
        try:
            workflow = Workflow(
                name=name,
                description=description,
                enabled=enabled,
                nodes=nodes,
                connections=connections or [],
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid workflow: {e}")
        return self.add_workflow(workflow)

    def add_workflow(self, workflow: Workflow) -> Workflow:
        """
        Register a fully built workflow.

        Raises:
            ConflictError: Id already present
            WorkflowValidationError: Graph violates connection rules
        """
        if workflow.id in self._workflows:
            raise ConflictError(f"Workflow already exists: {workflow.id}", resource="workflow")
        validate_workflow(workflow)
        for node in workflow.nodes:
            node.reset_runtime()

        self._workflows[workflow.id] = workflow
        self._logs[workflow.id] = deque(maxlen=self.log_limit)
        logger.info(f"Workflow added: {workflow.name} ({workflow.id})")
        self._emit("workflow:created", {"workflowId": workflow.id, "name": workflow.name})
        return workflow

    def update_workflow(self, workflow_id: str, patch: Dict[str, Any], owner: Optional[str] = None) -> Workflow:
        workflow = self.require_workflow(workflow_id)
        unknown = set(patch) - _WORKFLOW_FIELDS - _WORKFLOW_RUNTIME_FIELDS
        if unknown:
            raise ValidationError(f"Unknown workflow fields: {sorted(unknown)}")
        if set(patch) & _WORKFLOW_RUNTIME_FIELDS:
            self._check_writer(workflow_id, owner)

        was_enabled = workflow.enabled
        structural = False
        for key, value in patch.items():
            if key == "enabled":
                value = bool(value)
            elif key in _WORKFLOW_FIELDS and getattr(workflow, key) != value:
                structural = True
            setattr(workflow, key, value)

        if set(patch) & _WORKFLOW_FIELDS:
            workflow.updated_at = now_iso()
        if workflow.enabled != was_enabled:
            logger.info(f"Workflow {workflow_id} {'enabled' if workflow.enabled else 'disabled'}")
            self._emit("workflow:toggled", {"workflowId": workflow_id, "enabled": workflow.enabled})
        if structural:
            self._emit("workflow:updated", {"workflowId": workflow_id})
        return workflow

    def set_enabled(self, workflow_id: str, enabled: bool) -> Workflow:
        return self.update_workflow(workflow_id, {"enabled": enabled})

    def delete_workflow(self, workflow_id: str) -> bool:
        if workflow_id not in self._workflows:
            return False
        if workflow_id in self._owners:
            raise ConflictError(f"Workflow {workflow_id} is running", resource="workflow")
        del self._workflows[workflow_id]
        self._logs.pop(workflow_id, None)
        logger.info(f"Workflow deleted: {workflow_id}")
        self._emit("workflow:deleted", {"workflowId": workflow_id})
        return True

    def duplicate_workflow(self, workflow_id: str, name: Optional[str] = None) -> Workflow:
        """Copy structure with fresh ids; the copy starts disabled"""
        source = self.require_workflow(workflow_id)
        id_map = {node.id: new_id("node") for node in source.nodes}

        nodes = []
        for node in source.nodes:
            copy = node.model_copy(deep=True, update={"id": id_map[node.id]})
            copy.reset_runtime()
            nodes.append(copy)
        connections = [
            Connection(from_=id_map[c.from_], to=id_map[c.to], label=c.label)
            for c in source.connections
        ]
        return self.add_workflow(
            Workflow(
                name=name or f"{source.name} (copy)",
                description=source.description,
                enabled=False,
                nodes=nodes,
                connections=connections,
            )
        )

    # ------------------------------------------------------------------
    # Nodes and connections
    # ------------------------------------------------------------------

    def add_node(
        self,
        workflow_id: str,
        node_type: Union[NodeType, str],
        label: str = "",
        config: Optional[Dict[str, Any]] = None,
        position: Optional[Dict[str, float]] = None,
    ) -> Node:
        workflow = self.require_workflow(workflow_id)
        node = Node(type=NodeType(node_type), label=label, config=config or {}, position=position)
        workflow.nodes.append(node)
        self._structure_changed(workflow)
        return node

    def update_node(
        self,
        workflow_id: str,
        node_id: str,
        patch: Dict[str, Any],
        owner: Optional[str] = None,
    ) -> Node:
        """
        Patch a node.

        Runtime fields (status/input/output/run_id/error/skipped) need the
        runtime owner while one is held. Structural edits outside an active
        execution reset the workflow's runtime fields.

        Raises:
            ConflictError: Runtime write from a non-owner
        """
        workflow = self.require_workflow(workflow_id)
        node = workflow.get_node(node_id)
        if node is None:
            raise NotFoundError("Node", node_id)

        keys = set(patch)
        unknown = keys - RUNTIME_FIELDS - _NODE_STRUCTURE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown node fields: {sorted(unknown)}")
        if keys & RUNTIME_FIELDS:
            self._check_writer(workflow_id, owner)

        for key, value in patch.items():
            if key == "status":
                value = NodeStatus(value)
            elif key == "type":
                value = NodeType(value)
            setattr(node, key, value)

        if keys & _NODE_STRUCTURE_FIELDS:
            self._structure_changed(workflow)
        return node

    def delete_node(self, workflow_id: str, node_id: str) -> bool:
        workflow = self.require_workflow(workflow_id)
        node = workflow.get_node(node_id)
        if node is None:
            return False
        workflow.nodes.remove(node)
        workflow.connections = [c for c in workflow.connections if c.from_ != node_id and c.to != node_id]
        self._structure_changed(workflow)
        return True

    def add_connection(
        self,
        workflow_id: str,
        from_node: str,
        to_node: str,
        label: Optional[str] = None,
    ) -> Connection:
        """
        Raises:
            WorkflowValidationError: Self-loop, duplicate pair, duplicate branch label or unknown node
        """
        workflow = self.require_workflow(workflow_id)
        connection = Connection(from_=from_node, to=to_node, label=label)
        validate_connection(workflow, connection)
        workflow.connections.append(connection)
        self._structure_changed(workflow)
        return connection

    def delete_connection(self, workflow_id: str, connection_id: str) -> bool:
        workflow = self.require_workflow(workflow_id)
        before = len(workflow.connections)
        workflow.connections = [c for c in workflow.connections if c.id != connection_id]
        if len(workflow.connections) == before:
            return False
        self._structure_changed(workflow)
        return True

    def reset_node_states(self, workflow_id: str, owner: Optional[str] = None) -> None:
        workflow = self.require_workflow(workflow_id)
        self._check_writer(workflow_id, owner)
        for node in workflow.nodes:
            node.reset_runtime()

    # ------------------------------------------------------------------
    # Single-writer runtime ownership
    # ------------------------------------------------------------------

    def acquire_runtime(self, workflow_id: str, owner: str) -> None:
        self.require_workflow(workflow_id)
        holder = self._owners.get(workflow_id)
        if holder is not None and holder != owner:
            raise ConflictError(f"Workflow {workflow_id} runtime is held by {holder}", resource="workflow")
        self._owners[workflow_id] = owner

    def release_runtime(self, workflow_id: str, owner: str) -> None:
        if self._owners.get(workflow_id) == owner:
            del self._owners[workflow_id]

    def runtime_owner(self, workflow_id: str) -> Optional[str]:
        return self._owners.get(workflow_id)

    # ------------------------------------------------------------------
    # Execution logs
    # ------------------------------------------------------------------

    def add_log(self, workflow_id: str, entry: ExecutionLogEntry) -> None:
        self._logs.setdefault(workflow_id, deque(maxlen=self.log_limit)).append(entry)

    def clear_logs(self, workflow_id: str) -> None:
        if workflow_id in self._logs:
            self._logs[workflow_id].clear()

    def get_logs(self, workflow_id: str, limit: Optional[int] = None) -> List[ExecutionLogEntry]:
        """Oldest first; limit keeps the most recent entries"""
        entries = list(self._logs.get(workflow_id, ()))
        if limit:
            entries = entries[-limit:]
        return entries

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_directory(self, path: Union[str, Path]) -> List[Workflow]:
        """
        Load every *.json / *.yaml / *.yml workflow definition in path.

        A file holds one workflow mapping or a list of them. Ids already
        present are skipped.

        Raises:
            ConfigurationError: Unparseable file or invalid definition
        """
        directory = Path(path)
        if not directory.is_dir():
            logger.warning(f"Workflow directory not found: {directory}")
            return []

        loaded = []
        for file_path in sorted(directory.iterdir()):
            if file_path.suffix.lower() not in (".json", ".yaml", ".yml"):
                continue
            try:
                with open(file_path, "r") as f:
                    data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid workflow file: {e}", config_file=str(file_path))

            for definition in data if isinstance(data, list) else [data]:
                if not definition:
                    continue
                try:
                    workflow = Workflow.model_validate(definition)
                except PydanticValidationError as e:
                    raise ConfigurationError(f"Invalid workflow definition: {e}", config_file=str(file_path))
                if workflow.id in self._workflows:
                    logger.info(f"Skipping already loaded workflow {workflow.id} from {file_path.name}")
                    continue
                loaded.append(self.add_workflow(workflow))

        logger.info(f"Loaded {len(loaded)} workflows from {directory}")
        return loaded

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_writer(self, workflow_id: str, owner: Optional[str]) -> None:
        holder = self._owners.get(workflow_id)
        if holder is not None and holder != owner:
            raise ConflictError(
                f"Runtime fields of workflow {workflow_id} are owned by an active execution",
                resource="workflow",
            )

    def _structure_changed(self, workflow: Workflow) -> None:
        workflow.updated_at = now_iso()
        if workflow.id not in self._owners:
            for node in workflow.nodes:
                node.reset_runtime()
        self._emit("workflow:updated", {"workflowId": workflow.id})

    def _emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_name, payload)
