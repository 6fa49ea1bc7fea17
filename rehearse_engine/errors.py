from typing import Iterable, Optional


class RehearsalError(Exception):
    """Base class for everything the rehearsal engine raises."""


class ConfigLoadError(RehearsalError):
    """A job, build config or settings file is missing or malformed."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class EligibilityError(RehearsalError):
    """A job cannot be rehearsed. Turned into a rejection by the builder."""


class BuildConfigNotFoundError(RehearsalError):
    def __init__(self, key: str, job_name: Optional[str] = None):
        self.key = key
        self.job_name = job_name
        message = f"build config file {key} was not found"
        if job_name:
            message = f"{message} (referenced by {job_name})"
        super().__init__(message)


class SubmissionError(RehearsalError):
    def __init__(self, job_name: str, reason: str):
        self.job_name = job_name
        self.reason = reason
        super().__init__(f"failed to submit rehearsal job {job_name}: {reason}")


class StreamError(RehearsalError):
    """The job status stream failed or delivered something we cannot interpret."""


class RehearsalTimeoutError(RehearsalError):
    def __init__(self, timeout: float, outstanding: Iterable[str]):
        self.timeout = timeout
        self.outstanding = sorted(outstanding)
        super().__init__(
            f"rehearsal jobs did not finish within {timeout:.0f}s, still waiting for: {', '.join(self.outstanding)}"
        )
