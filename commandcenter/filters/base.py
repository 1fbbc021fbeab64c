from abc import ABC

from commandcenter.server.context import ElectStateContext


class JobFilter(ABC):
    """Hook consulted by the processor before a job's next state is persisted.

    A filter may replace ``candidate_state`` on the context (for example to turn
    a failure into a delayed retry). Filters run in registration order and the
    last one to touch the candidate wins.
    """

    def on_state_election(self, elect_state_context: ElectStateContext) -> None:
        return None
