# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Suite for cmdflow

Structure:
- unit/: parser, templates, tracker, registry, built-ins, config, clients
- workflow/: store, graph, conditions, engine, node types, listeners
- api/: HTTP surface through the FastAPI TestClient
"""
