"""Exception types raised across the orchestration core."""

from typing import Optional


class TariffOSError(Exception):
    """Base class for all TariffOS errors."""


class JobNotFoundError(TariffOSError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job '{job_id}' not found.")
        self.job_id = job_id


class TerminalStateError(TariffOSError):
    """Raised when a reducer is asked to change a finished conversation."""


class AgentError(TariffOSError):
    """
    A collaborator call failed: transport error, error status, or a response
    that is not a JSON object.
    """

    def __init__(self, agent: str, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"[{agent}] {message}")
        self.agent = agent
        self.cause = cause


class OrchestrationError(TariffOSError):
    """The control loop aborted; the job has been persisted as failed."""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(f"Job '{job_id}' failed: {reason}")
        self.job_id = job_id
        self.reason = reason


class LLMError(TariffOSError):
    """No configured model produced a usable JSON answer."""
