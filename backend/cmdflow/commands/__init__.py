# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Command layer: parser, registry and run tracking.
"""

from cmdflow.commands.models import (
    Command,
    CommandCall,
    CommandMetadata,
    CommandRun,
    OutputType,
    RunSource,
    RunStatus,
)
from cmdflow.commands.parser import CommandParseError, parse_invocation
from cmdflow.commands.registry import CommandRegistry, CommandRunHandle, current_run_id
from cmdflow.commands.tracker import CommandRunTracker
from cmdflow.commands.builtins import register_builtin_commands

__all__ = [
    "Command",
    "CommandCall",
    "CommandMetadata",
    "CommandParseError",
    "CommandRegistry",
    "CommandRun",
    "CommandRunHandle",
    "CommandRunTracker",
    "OutputType",
    "RunSource",
    "RunStatus",
    "current_run_id",
    "parse_invocation",
    "register_builtin_commands",
]
