# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
cmdflow - tracked command runs and graph workflows.
"""

__version__ = "1.0.0"
