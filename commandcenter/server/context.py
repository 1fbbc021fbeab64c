from datetime import datetime
from typing import Optional

from commandcenter.common.job import Job
from commandcenter.common.states import BaseState


class ElectStateContext:
    def __init__(
        self,
        job: Job,
        candidate_state: BaseState,
        exception: Optional[BaseException] = None,
        now: Optional[datetime] = None,
    ):
        self.job = job
        self.candidate_state = candidate_state
        self.exception = exception
        self.now = now or candidate_state.created_at
