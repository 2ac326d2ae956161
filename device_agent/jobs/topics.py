"""
MQTT topic names for the jobs service, scoped to one thing.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class JobTopics:
    thing_name: str

    @property
    def prefix(self) -> str:
        return f"$aws/things/{self.thing_name}/jobs"

    @property
    def start_next(self) -> str:
        return f"{self.prefix}/start-next"

    @property
    def start_next_accepted(self) -> str:
        return f"{self.start_next}/accepted"

    @property
    def start_next_rejected(self) -> str:
        return f"{self.start_next}/rejected"

    @property
    def get_pending(self) -> str:
        return f"{self.prefix}/get"

    @property
    def get_pending_accepted(self) -> str:
        return f"{self.get_pending}/accepted"

    @property
    def get_pending_rejected(self) -> str:
        return f"{self.get_pending}/rejected"

    def update(self, job_id: str) -> str:
        return f"{self.prefix}/{job_id}/update"

    @property
    def update_accepted(self) -> str:
        return f"{self.prefix}/+/update/accepted"

    @property
    def update_rejected(self) -> str:
        return f"{self.prefix}/+/update/rejected"
