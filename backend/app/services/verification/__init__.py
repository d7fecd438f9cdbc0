"""
Verification Orchestration

Submits ROFL apps to the backend for reproducible-build verification,
polls for results, and records per-deployment outcomes.

The scheduler and service depend on app.services.rofl and are imported from
their own modules.
"""

from .aggregator import aggregate_status, format_verification_error, parse_mismatched_ids
from .exceptions import (
    AuthenticationError,
    ManifestFetchError,
    PollError,
    PollTimeoutError,
    SubmissionError,
    TaskNotFoundError,
    VerificationError,
)
from .models import VerificationResult
from .poller import ResultPoller
from .session import SessionManager
from .submitter import TaskSubmitter

__all__ = [
    "aggregate_status",
    "format_verification_error",
    "parse_mismatched_ids",
    "AuthenticationError",
    "ManifestFetchError",
    "PollError",
    "PollTimeoutError",
    "SubmissionError",
    "TaskNotFoundError",
    "VerificationError",
    "VerificationResult",
    "ResultPoller",
    "SessionManager",
    "TaskSubmitter",
]
