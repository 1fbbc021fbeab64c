# commandcenter/handlers/rituals.py
from typing import Any, Dict

from commandcenter.common.exceptions import InvalidPayloadError
from commandcenter.execution.registry import HandlerContext


async def run_ritual(payload: Dict[str, Any], ctx: HandlerContext) -> Dict[str, Any]:
    ritual_id = payload.get("ritualId")
    if not ritual_id:
        raise InvalidPayloadError("Payload is missing 'ritualId'")
    scheduler = ctx.service("scheduler")
    return await scheduler.run_ritual(str(ritual_id))
