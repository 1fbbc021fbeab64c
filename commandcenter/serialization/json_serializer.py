# commandcenter/serialization/json_serializer.py
import json
from datetime import datetime
from typing import Dict, Any, Optional

from commandcenter.common.exceptions import InvalidPayloadError
from commandcenter.common.job import Job
from commandcenter.serialization.base import BaseSerializer


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class JsonSerializer(BaseSerializer):
    def serialize_payload(self, payload: Dict[str, Any]) -> str:
        return json.dumps(payload, default=str)

    def deserialize_payload(self, data: str) -> Dict[str, Any]:
        try:
            payload = json.loads(data)
        except (TypeError, json.JSONDecodeError) as e:
            raise InvalidPayloadError(f"Malformed job payload: {e}") from e
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Job payload must be a JSON object")
        return payload

    def job_to_dict(self, job: Job) -> Dict[str, Any]:
        try:
            payload = self.deserialize_payload(job.payload)
        except InvalidPayloadError:
            payload = {"raw": job.payload}
        return {
            "id": job.id,
            "type": job.type,
            "payload": payload,
            "status": job.status,
            "attempts": job.attempts,
            "maxRetries": job.max_retries,
            "runAt": _iso(job.run_at),
            "startedAt": _iso(job.started_at),
            "completedAt": _iso(job.completed_at),
            "createdAt": _iso(job.created_at),
            "error": job.error,
            "executionTime": job.execution_time_ms,
        }
