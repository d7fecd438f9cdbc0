"""
Verification Backend Models

Request/response payloads exchanged with the ROFL app backend.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, field_validator


class VerifyDeploymentsRequest(BaseModel):
    """Body of POST /rofl/verify_deployments"""
    repository_url: str
    ref: str
    deployment_name: str


class VerifyDeploymentsResponse(BaseModel):
    """Submission acknowledgement carrying the backend task id"""
    model_config = ConfigDict(extra="ignore")

    task_id: str


class VerificationResult(BaseModel):
    """
    Terminal result of a verification task.

    `verified` is the only correctness-bearing field; stdout/stderr/err are
    raw build tool output used for diagnostics.
    """
    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = None  # "in_progress" on 202 responses
    verified: bool = False
    commit_sha: str = ""
    stdout: str = ""
    stderr: str = ""
    err: str = ""

    @field_validator("commit_sha", "stdout", "stderr", "err", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return "" if v is None else v


class NonceResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    nonce: str


class LoginResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str = ""
    address: str = ""
