"""
Error taxonomy for the provisioning pipeline.

Handler errors are stored verbatim in Job.error, so messages should read
well on their own.
"""


class SpinupError(Exception):
    """Base class for provisioning errors."""


class NotFoundError(SpinupError):
    """A server, job or container does not exist."""


class ConflictError(SpinupError):
    """The request clashes with current state (unknown game, busy server, ...)."""


class ResourceExhaustedError(SpinupError):
    """No free resource left, e.g. no host port in the configured range."""


class ExternalServiceError(SpinupError):
    """The container runtime (or another dependency) failed."""


class ScriptValidationError(SpinupError):
    """A custom startup script was rejected."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Script validation failed: " + "; ".join(errors))
