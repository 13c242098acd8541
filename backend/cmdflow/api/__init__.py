# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
API Routers
"""

from cmdflow.api import commands, events, runs, workflows

__all__ = ["commands", "events", "runs", "workflows"]
