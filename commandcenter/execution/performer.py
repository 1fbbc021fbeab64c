# commandcenter/execution/performer.py
import asyncio
import inspect
from typing import Any, Dict, Optional

from commandcenter.execution.registry import HandlerContext, HandlerRegistry


async def perform_job_async(
    registry: HandlerRegistry, job_type: str, payload: Dict[str, Any], ctx: HandlerContext
) -> Optional[Dict[str, Any]]:
    """Looks up and runs the handler for `job_type`. Sync handlers run in a thread."""
    handler = registry.get_handler(job_type)
    if inspect.iscoroutinefunction(handler):
        return await handler(payload, ctx)
    result = await asyncio.to_thread(handler, payload, ctx)
    if inspect.isawaitable(result):
        return await result
    return result
