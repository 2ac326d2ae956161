"""
In-flight job state shared by the solicitor and the execution handler.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass
class AgentState:
    job_in_flight: bool = False
    current_job_id: Optional[str] = None

    def begin_job(self, job_id: str) -> None:
        self.job_in_flight = True
        self.current_job_id = job_id

    def finish_job(self, job_id: Optional[str] = None) -> None:
        # A late completion for an older job must not clear a newer one
        if job_id is not None and self.current_job_id not in (None, job_id):
            return
        self.job_in_flight = False
        self.current_job_id = None
