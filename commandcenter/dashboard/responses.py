"""JSON envelopes and error mapping shared by every controller."""
import logging
from datetime import datetime, UTC
from typing import Any, Dict, Optional

from litestar import Request, Response
from litestar.exceptions import HTTPException
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from commandcenter.common.exceptions import (
    CommandCenterException,
    InvalidPayloadError,
    NotFoundError,
    RitualConfigError,
    RitualCooldownError,
)
from commandcenter.common.records import Project, Ritual

logger = logging.getLogger(__name__)


def ok(data: Any = None, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message is not None:
        body["message"] = message
    body.update(extra)
    return body


def error_response(error: str, status_code: int, **extra: Any) -> Response:
    return Response(content={"success": False, "error": error, **extra}, status_code=status_code)


def parse_timestamp(value: Any, field: str) -> Optional[datetime]:
    """ISO-8601 text to an aware datetime; naive values are read as UTC."""
    if value in (None, ""):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise InvalidPayloadError(f"'{field}' must be an ISO-8601 timestamp") from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def project_to_dict(project: Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "type": project.type,
        "status": project.status,
        "color": project.color,
        "createdAt": project.created_at.isoformat(),
        "updatedAt": project.updated_at.isoformat(),
    }


def ritual_to_dict(ritual: Ritual, project: Optional[Project] = None) -> Dict[str, Any]:
    return {
        "id": ritual.id,
        "projectId": ritual.project_id,
        "project": project.name if project else None,
        "name": ritual.name,
        "cron": ritual.cron,
        "streak": ritual.streak,
        "lastRun": ritual.last_run.isoformat() if ritual.last_run else None,
        "enabled": ritual.enabled,
    }


def handle_not_found(request: Request, exc: NotFoundError) -> Response:
    return error_response(str(exc), HTTP_404_NOT_FOUND)


def handle_cooldown(request: Request, exc: RitualCooldownError) -> Response:
    return error_response(str(exc), HTTP_429_TOO_MANY_REQUESTS)


def handle_config_error(request: Request, exc: RitualConfigError) -> Response:
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return error_response(str(exc), HTTP_500_INTERNAL_SERVER_ERROR)


def handle_domain_error(request: Request, exc: CommandCenterException) -> Response:
    return error_response(str(exc), HTTP_400_BAD_REQUEST)


def handle_http_error(request: Request, exc: HTTPException) -> Response:
    extra = {"details": exc.extra} if exc.extra else {}
    return error_response(exc.detail, exc.status_code, **extra)


def handle_unexpected(request: Request, exc: Exception) -> Response:
    logger.error(f"{request.method} {request.url.path} failed", exc_info=exc)
    return error_response("Internal server error", HTTP_500_INTERNAL_SERVER_ERROR)


EXCEPTION_HANDLERS = {
    NotFoundError: handle_not_found,
    RitualCooldownError: handle_cooldown,
    RitualConfigError: handle_config_error,
    CommandCenterException: handle_domain_error,
    HTTPException: handle_http_error,
    Exception: handle_unexpected,
}
