"""Exceptions raised by the verification subsystem."""


class VerificationError(Exception):
    """Base exception for verification orchestration."""

    pass


class AuthenticationError(VerificationError):
    """Raised when a backend bearer token cannot be obtained."""

    pass


class SubmissionError(VerificationError):
    """Raised when a verification task cannot be submitted."""

    pass


class PollError(VerificationError):
    """Raised when polling for task results fails."""

    pass


class PollTimeoutError(PollError):
    """Raised when a task does not finish before the poll deadline."""

    pass


class TaskNotFoundError(PollError):
    """Raised when the backend no longer knows the task (unknown or expired)."""

    pass


class ManifestFetchError(VerificationError):
    """Raised when rofl.yaml or the apps registry cannot be downloaded."""

    pass
