# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities and shared modules for cmdflow.

This package contains:
- config: Configuration management
- dependencies: Dependency injection for the HTTP surface
- errors: Custom exceptions
- logging: Structured logging
"""

from cmdflow.core.config import get_config, Config
from cmdflow.core.errors import CmdflowError, NotFoundError, ValidationError
from cmdflow.core.logging import get_logger

__all__ = [
    "get_config",
    "Config",
    "CmdflowError",
    "NotFoundError",
    "ValidationError",
    "get_logger",
]
