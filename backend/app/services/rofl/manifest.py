"""
ROFL Manifest

Parsing for rofl.yaml. Only the fields the registry uses are modelled;
unknown fields are ignored and missing ones take empty defaults.
"""

from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class ManifestParseError(ValueError):
    """Raised when rofl.yaml is not valid YAML or has the wrong shape."""

    pass


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Storage(_Lenient):
    kind: str = ""
    size: int = 0


class Resources(_Lenient):
    memory: int = 0
    cpus: float = 0
    storage: Storage = Field(default_factory=Storage)


class ContainerArtifact(_Lenient):
    runtime: str = ""
    compose: str = ""


class Artifacts(_Lenient):
    builder: str = ""
    firmware: str = ""
    kernel: str = ""
    stage2: str = ""
    container: ContainerArtifact = Field(default_factory=ContainerArtifact)


class Policy(_Lenient):
    enclaves: List[str] = Field(default_factory=list)

    @field_validator("enclaves", mode="before")
    @classmethod
    def normalize_enclaves(cls, v: Any) -> List[str]:
        """Accept both `["id1", "id2"]` and `[{id: "id1"}, {id: "id2"}]`."""
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("enclaves must be a list")
        ids = []
        for item in v:
            if isinstance(item, dict):
                ids.append(str(item.get("id") or ""))
            else:
                ids.append(str(item))
        return ids


class ManifestDeployment(_Lenient):
    network: str = ""
    app_id: str = ""
    policy: Policy = Field(default_factory=Policy)

    @property
    def enclave_ids(self) -> List[str]:
        return [enclave for enclave in self.policy.enclaves if enclave]


class Manifest(_Lenient):
    name: str = ""
    version: str = ""
    description: str = ""
    author: str = ""
    license: str = ""
    tee: str = ""
    kind: str = ""
    repository: str = ""
    homepage: str = ""
    resources: Resources = Field(default_factory=Resources)
    artifacts: Artifacts = Field(default_factory=Artifacts)
    deployments: Dict[str, Optional[ManifestDeployment]] = Field(default_factory=dict)

    @field_validator("deployments", mode="before")
    @classmethod
    def null_deployments(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("name", "version", "description", "author", "license", "tee",
                     "kind", "repository", "homepage", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def deployment_names(self) -> List[str]:
        return list(self.deployments.keys())


def parse_manifest(text: str) -> Manifest:
    """
    Parse rofl.yaml content.

    Raises:
        ManifestParseError: On invalid YAML or a document that isn't a mapping
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestParseError(f"failed to parse rofl.yaml: {e}") from e

    if data is None:
        return Manifest()
    if not isinstance(data, dict):
        raise ManifestParseError("failed to parse rofl.yaml: top level is not a mapping")

    try:
        return Manifest.model_validate(data)
    except ValidationError as e:
        raise ManifestParseError(f"failed to parse rofl.yaml: {e}") from e
