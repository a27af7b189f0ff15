# botqueue/errors.py
# Failure taxonomy for job execution.


class JobError(Exception):
    """Base class for failures raised while executing a job (transient by default)."""


class PermanentJobError(JobError):
    """The job can never succeed as-is (missing field, bot gone, bad payload).

    The processor fails it straight to FAILED without consuming retries.
    """


class GenerationError(JobError):
    """The content service answered but reported an unsuccessful generation."""


class ThrottleTimeout(JobError):
    """No throttle slot became free before the worker's time budget ran out."""


class ContentServiceNotConfigured(PermanentJobError):
    pass
