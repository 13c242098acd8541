# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Command API Routes

- List / search registered commands
- Execute an invocation (optionally waiting for the chain to settle)
"""

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from cmdflow.commands.models import RunSource
from cmdflow.commands.registry import CommandRegistry
from cmdflow.core.dependencies import get_registry

router = APIRouter(prefix="/commands", tags=["commands"])


class ExecuteRequest(BaseModel):
    """Request to execute a command invocation"""
    command: str
    source: str = RunSource.API.value
    wait: bool = True
    timeout: Optional[float] = None


def _describe(command) -> Dict[str, Any]:
    return {
        "path": command.path,
        "namespace": command.namespace,
        "description": command.metadata.description,
        "widget": command.metadata.widget,
        "args": command.metadata.args,
    }


@router.get("")
async def list_commands(
    q: Optional[str] = None,
    registry: CommandRegistry = Depends(get_registry)
) -> List[Dict[str, Any]]:
    """List registered commands, filtered by q when given"""
    commands = registry.search(q) if q else registry.list_commands()
    return [_describe(c) for c in commands]


@router.post("/execute")
async def execute_command(
    request: ExecuteRequest,
    registry: CommandRegistry = Depends(get_registry)
) -> Dict[str, Any]:
    """Execute an invocation; returns the chain's runs"""
    handle = registry.execute(request.command, source=request.source)

    if request.wait:
        try:
            await asyncio.wait_for(handle.wait(), timeout=request.timeout)
        except asyncio.TimeoutError:
            raise HTTPException(status_code=504, detail=f"Command did not settle within {request.timeout}s")

    return {
        "runId": handle.run_id,
        "chainId": handle.chain_id,
        "status": handle.status.value,
        "output": handle.output,
        "error": handle.error,
        "runs": [r.model_dump(mode="json") for r in handle.runs],
    }
