"""
Status Aggregation

Pure functions turning per-deployment outcomes into one display status and
human-readable diagnostics.
"""

from typing import Iterable, List

from app.models.deployment import VerificationStatus

from .models import VerificationResult

MAINNET = "mainnet"

# Bech32 human-readable prefix of ROFL app/enclave identifiers
ENCLAVE_ID_PREFIX = "rofl1"
_MIN_ENCLAVE_ID_LENGTH = 11
_TRAILING_PUNCTUATION = ",.;:"

VERIFIED_MESSAGE = "Built enclave identities MATCH on-chain measurements. Verification successful."
GENERIC_MISMATCH_MESSAGE = "Verification failed: enclave measurements do not match"


def aggregate_status(deployments: Iterable) -> VerificationStatus:
    """
    Compute an application's display status from its deployments.

    Precedence:
    1. mainnet, if present, is authoritative (even when it failed)
    2. otherwise any verified deployment makes the app verified
    3. otherwise the first remaining deployment by name decides
    4. no deployments at all means pending

    Args:
        deployments: Objects with `deployment_name` and `status` attributes

    Returns:
        Aggregated VerificationStatus
    """
    others = []
    for deployment in deployments:
        if deployment.deployment_name == MAINNET:
            return VerificationStatus(deployment.status)
        others.append(deployment)

    if not others:
        return VerificationStatus.PENDING

    if any(VerificationStatus(d.status) == VerificationStatus.VERIFIED for d in others):
        return VerificationStatus.VERIFIED

    first = min(others, key=lambda d: d.deployment_name)
    return VerificationStatus(first.status)


def parse_mismatched_ids(output: str) -> List[str]:
    """
    Best-effort extraction of enclave identifiers from build tool output.

    Scans whitespace-separated words for the `rofl1` prefix; results are
    de-duplicated in order of first appearance.
    """
    ids: List[str] = []
    seen = set()
    for line in output.splitlines():
        if ENCLAVE_ID_PREFIX not in line:
            continue
        for word in line.split():
            if word.startswith(ENCLAVE_ID_PREFIX) and len(word) >= _MIN_ENCLAVE_ID_LENGTH:
                enclave_id = word.rstrip(_TRAILING_PUNCTUATION)
                if enclave_id not in seen:
                    seen.add(enclave_id)
                    ids.append(enclave_id)
    return ids


def _is_measurement_mismatch(err: str) -> bool:
    return "exit status 1" in err or "command" in err


def format_verification_error(result: VerificationResult) -> str:
    """Format a failed verification result into a user-facing message."""
    if _is_measurement_mismatch(result.err):
        msg = "Verification failed: enclave measurements do not match on-chain deployments.\n\n"

        mismatched_ids = parse_mismatched_ids(result.stderr + "\n" + result.stdout)
        if mismatched_ids:
            msg += "Mismatched Enclave IDs:\n"
            for enclave_id in mismatched_ids:
                msg += f"  - {enclave_id}\n"
            msg += "\n"

        msg += (
            "This usually means the application was built with different code or "
            "build configuration than what's in the repository."
        )
        return msg

    if result.err:
        return result.err

    return GENERIC_MISMATCH_MESSAGE


def outcome_status(result: VerificationResult) -> VerificationStatus:
    return VerificationStatus.VERIFIED if result.verified else VerificationStatus.FAILED


def outcome_message(result: VerificationResult) -> str:
    if result.verified:
        return VERIFIED_MESSAGE
    return format_verification_error(result)
