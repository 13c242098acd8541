# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Dependency injection for the cmdflow HTTP surface.

Services are constructed once in create_app() and held on app.state;
these dependencies hand them to route handlers.
"""

from fastapi import Request

from cmdflow.commands.registry import CommandRegistry
from cmdflow.commands.tracker import CommandRunTracker
from cmdflow.core.config import Config
from cmdflow.event_bus import EventBus
from cmdflow.workflow.engine import WorkflowEngine
from cmdflow.workflow.store import InMemoryWorkflowStore


def get_current_config(request: Request) -> Config:
    """Configuration the app was built with."""
    return request.app.state.config


def get_tracker(request: Request) -> CommandRunTracker:
    return request.app.state.tracker


def get_registry(request: Request) -> CommandRegistry:
    return request.app.state.registry


def get_workflow_store(request: Request) -> InMemoryWorkflowStore:
    return request.app.state.workflow_store


def get_workflow_engine(request: Request) -> WorkflowEngine:
    """Get the workflow engine initialized at startup."""
    return request.app.state.workflow_engine


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus
