# commandcenter/serialization/base.py
from abc import ABC, abstractmethod
from typing import Dict, Any

from commandcenter.common.job import Job


class BaseSerializer(ABC):
    @abstractmethod
    def serialize_payload(self, payload: Dict[str, Any]) -> str: ...

    @abstractmethod
    def deserialize_payload(self, data: str) -> Dict[str, Any]: ...

    @abstractmethod
    def job_to_dict(self, job: Job) -> Dict[str, Any]: ...
