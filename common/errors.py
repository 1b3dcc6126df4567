"""Error taxonomy shared by the API and the background job continuations."""

from typing import Optional


class JobCoreError(Exception):
    """Base class for all errors raised by this service."""


class ConfigurationError(JobCoreError):
    """Settings are inconsistent."""


class AuthorizationError(JobCoreError):
    """No credential candidate could be verified for the target repository."""


class UpstreamCallError(JobCoreError):
    """The analysis engine or the code-hosting provider did not succeed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderCallError(UpstreamCallError):
    """A GitHub API call failed."""


class GenerationTimeoutError(UpstreamCallError):
    """The analysis engine did not answer within the configured deadline."""


class StaleJobError(JobCoreError):
    """A job stayed in flight far longer than any engine call can take.

    Only raised by the poll-time staleness check and always recovered there
    by failing the job.
    """

    def __init__(self, job_id: str, age_seconds: float):
        super().__init__(f"Job {job_id} in flight for {int(age_seconds)}s")
        self.job_id = job_id
        self.age_seconds = age_seconds


class CommentBatchInProgressError(JobCoreError):
    """Another comment batch currently holds the lease for this pull request."""
