# commandcenter/common/exceptions.py


class CommandCenterException(Exception):
    """Base exception for the command center."""

    pass


class InvalidJobError(CommandCenterException):
    """Raised when a job request fails validation at enqueue time."""

    pass


class NonRetryableJobError(CommandCenterException):
    """A handler failure that retrying cannot fix."""

    retryable = False


class UnknownJobTypeError(NonRetryableJobError):
    """Raised when no handler is registered for a job type."""

    def __init__(self, job_type: str):
        super().__init__(f"Unknown job type: {job_type}")
        self.job_type = job_type


class InvalidPayloadError(NonRetryableJobError):
    """Raised when a job payload is malformed or misses required keys."""

    pass


class ConfigurationError(NonRetryableJobError):
    """Raised when a handler needs configuration that is not present."""

    pass


class NotFoundError(CommandCenterException):
    retryable = False


class JobNotFoundError(NotFoundError):
    pass


class RitualNotFoundError(NotFoundError):
    pass


class ProjectNotFoundError(NotFoundError):
    pass


class TaskNotFoundError(NotFoundError):
    pass


class RitualConfigError(CommandCenterException):
    """Raised when the rituals file cannot be read or parsed."""

    pass


class RitualCooldownError(CommandCenterException):
    """A manual ritual run was requested too soon after the last one."""

    pass


class RitualExecutionError(CommandCenterException):
    """A ritual command failed, timed out or exited non-zero."""

    pass


class InvalidTaskError(CommandCenterException):
    pass


def is_retryable(exc: BaseException) -> bool:
    return getattr(exc, "retryable", True)
