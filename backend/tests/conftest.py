# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Shared fixtures: a fresh event bus, tracker, registry, store and engine per test.
"""

import pytest

from cmdflow.commands import CommandRegistry, CommandRunTracker
from cmdflow.core.config import Config
from cmdflow.event_bus import EventBus
from cmdflow.workflow import InMemoryWorkflowStore, WorkflowEngine


@pytest.fixture
def config():
    """Fast defaults for tests"""
    return Config(run_history_limit=100, workflow_log_limit=200, default_delay_seconds=0.01)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def tracker(event_bus, config):
    return CommandRunTracker(event_bus=event_bus, history_limit=config.run_history_limit)


@pytest.fixture
def registry(tracker, event_bus):
    return CommandRegistry(tracker, event_bus=event_bus)


@pytest.fixture
def store(event_bus, config):
    return InMemoryWorkflowStore(event_bus=event_bus, log_limit=config.workflow_log_limit)


@pytest.fixture
def engine(store, registry, event_bus, config):
    return WorkflowEngine(store, registry, event_bus=event_bus, config=config)
