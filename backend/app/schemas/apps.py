"""
App Registry Schemas

Pydantic models for the app listing and verification API.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class DeploymentStatusResponse(BaseModel):
    """Latest verification outcome of one deployment"""

    name: str = Field(..., description="Deployment name from rofl.yaml (e.g. mainnet)")
    status: str = Field(..., description="pending, verified or failed")
    commit_sha: str = Field("", description="Commit the backend built")
    verification_msg: str = Field("", description="Success message or failure diagnostics")
    last_verified: Optional[datetime] = Field(None, description="Time of the last verification")
    enclave_ids: List[str] = Field(
        default_factory=list, description="Enclave ids the deployment's policy allows"
    )


class ManifestDeploymentInfo(BaseModel):
    """A deployment as declared in rofl.yaml"""

    name: str
    network: str = ""
    app_id: str = ""
    enclave_ids: List[str] = Field(default_factory=list)


class AppDetails(BaseModel):
    """An app with manifest metadata and aggregated verification status"""

    id: int
    github_url: str
    git_ref: str
    name: str = ""
    version: str = ""
    description: str = ""
    author: str = ""
    license: str = ""
    tee: str = ""
    kind: str = ""
    repository: str = ""
    homepage: str = ""
    memory: int = 0
    cpus: float = 0
    storage_kind: str = ""
    storage_size: int = 0
    status: str = Field(..., description="Aggregated status, mainnet preferred")
    networks: List[str] = Field(default_factory=list)
    mainnet_deployment: Optional[DeploymentStatusResponse] = None
    other_deployments: List[DeploymentStatusResponse] = Field(default_factory=list)
    deployments: List[ManifestDeploymentInfo] = Field(default_factory=list)
    rofl_yaml: str = ""


class AppListResponse(BaseModel):
    """All apps plus headline counts"""

    apps: List[AppDetails]
    total_apps: int = Field(..., description="Number of registered apps")
    verified_apps: int = Field(..., description="Apps with at least one verified deployment")
    total_deployments: int = Field(..., description="Deployment records across all apps")


class VerifyRequest(BaseModel):
    """On-demand verification request"""

    github_url: str = ""
    git_ref: str = ""
    deployment_name: str = ""


class VerifyResponse(BaseModel):
    task_id: str


class AppVerificationResponse(BaseModel):
    """Outcome of an immediate re-verification of one app"""

    app_id: int
    deployments: Dict[str, str] = Field(
        default_factory=dict,
        description="Status per deployment; empty when the app was skipped",
    )
