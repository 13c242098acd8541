# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for cmdflow - tracked command runs and graph workflows
"""

from setuptools import setup, find_packages

setup(
    name="cmdflow",
    version="1.0.0",
    description="Command registry with tracked runs and an event-driven workflow engine",
    package_dir={"": "backend"},
    packages=find_packages(where="backend", exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0.0",
        "PyYAML>=6.0",
        "httpx>=0.25.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "cmdflow-api=cmdflow.main:main",
        ]
    },
)
