"""
App Registry API

JSON endpoints for listing apps with their verification status, submitting
on-demand verification, re-verifying a registered app immediately, and
proxying task results from the backend.
"""

import asyncio
import logging
from typing import List

import aiohttp
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.exc import SQLAlchemyError

from app.db.database import async_session_factory
from app.models.application import Application
from app.models.deployment import Deployment, VerificationStatus
from app.schemas.apps import (
    AppDetails,
    AppListResponse,
    AppVerificationResponse,
    DeploymentStatusResponse,
    ManifestDeploymentInfo,
    VerifyRequest,
    VerifyResponse,
)
from app.services.rofl.manifest import Manifest, ManifestParseError, parse_manifest
from app.services.store import RegistryStore, SQLRegistryStore
from app.services.verification.aggregator import MAINNET, aggregate_status
from app.services.verification.exceptions import AuthenticationError, SubmissionError
from app.services.verification.service import VerificationService, verification_service

logger = logging.getLogger(__name__)
router = APIRouter()

DEFAULT_GIT_REF = "main"
DISPLAY_NETWORKS = ("mainnet", "testnet")


def get_store() -> RegistryStore:
    return SQLRegistryStore(async_session_factory)


def get_verification_service() -> VerificationService:
    return verification_service


def _load_manifest(app: Application) -> Manifest:
    if not app.rofl_yaml:
        return Manifest()
    try:
        return parse_manifest(app.rofl_yaml)
    except ManifestParseError as e:
        logger.warning(f"Stored rofl.yaml for app {app.id} is invalid: {e}")
        return Manifest()


def build_app_details(app: Application, deployments: List[Deployment]) -> AppDetails:
    """Combine an app, its manifest and its deployment records for display."""
    manifest = _load_manifest(app)

    mainnet_deployment = None
    other_deployments = []
    for deployment in deployments:
        declared = manifest.deployments.get(deployment.deployment_name)
        entry = DeploymentStatusResponse(
            name=deployment.deployment_name,
            status=deployment.status,
            commit_sha=deployment.commit_sha or "",
            verification_msg=deployment.verification_msg or "",
            last_verified=deployment.last_verified,
            enclave_ids=declared.enclave_ids if declared else [],
        )
        if deployment.deployment_name == MAINNET:
            mainnet_deployment = entry
        else:
            other_deployments.append(entry)

    names = {d.deployment_name for d in deployments}
    networks = [network for network in DISPLAY_NETWORKS if network in names]

    declared_deployments = [
        ManifestDeploymentInfo(
            name=name,
            network=declared.network,
            app_id=declared.app_id,
            enclave_ids=declared.enclave_ids,
        )
        for name, declared in manifest.deployments.items()
        if declared is not None
    ]

    return AppDetails(
        id=app.id,
        github_url=app.github_url,
        git_ref=app.git_ref,
        name=manifest.name,
        version=manifest.version,
        description=manifest.description,
        author=manifest.author,
        license=manifest.license,
        tee=manifest.tee,
        kind=manifest.kind,
        repository=manifest.repository,
        homepage=manifest.homepage,
        memory=manifest.resources.memory,
        cpus=manifest.resources.cpus,
        storage_kind=manifest.resources.storage.kind,
        storage_size=manifest.resources.storage.size,
        status=aggregate_status(deployments).value,
        networks=networks,
        mainnet_deployment=mainnet_deployment,
        other_deployments=other_deployments,
        deployments=declared_deployments,
        rofl_yaml=app.rofl_yaml or "",
    )


async def _get_deployments(store: RegistryStore, app_id: int) -> List[Deployment]:
    try:
        return await store.get_deployments(app_id)
    except SQLAlchemyError as e:
        logger.error(f"Failed to get deployments for app {app_id}: {e}")
        return []


@router.get("/apps", response_model=AppListResponse)
async def list_apps(store: RegistryStore = Depends(get_store)):
    """List all apps with aggregated verification status"""
    try:
        apps = await store.list_applications()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load apps: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load apps",
        )

    details = []
    verified_apps = 0
    total_deployments = 0
    for app in apps:
        deployments = await _get_deployments(store, app.id)
        details.append(build_app_details(app, deployments))

        if any(d.status == VerificationStatus.VERIFIED.value for d in deployments):
            verified_apps += 1
        total_deployments += len(deployments)

    return AppListResponse(
        apps=details,
        total_apps=len(apps),
        verified_apps=verified_apps,
        total_deployments=total_deployments,
    )


@router.get("/apps/{app_id}", response_model=AppDetails)
async def get_app(app_id: str, store: RegistryStore = Depends(get_store)):
    """Get a single app"""
    try:
        parsed_id = int(app_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid app ID")

    try:
        app = await store.get_application_by_id(parsed_id)
    except SQLAlchemyError as e:
        logger.error(f"Failed to load app {parsed_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load app",
        )
    if app is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")

    deployments = await _get_deployments(store, app.id)
    return build_app_details(app, deployments)


@router.post("/verify", response_model=VerifyResponse)
async def submit_verification(
    request: VerifyRequest,
    service: VerificationService = Depends(get_verification_service),
):
    """Submit an on-demand verification task to the backend"""
    if not request.github_url or not request.deployment_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields"
        )

    if service.submitter is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Backend verification service not configured",
        )

    git_ref = request.git_ref or DEFAULT_GIT_REF
    try:
        task_id = await service.submitter.submit(
            request.github_url, git_ref, request.deployment_name
        )
    except (AuthenticationError, SubmissionError) as e:
        logger.error(f"Failed to submit verification: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to submit verification: {e}",
        )

    logger.info(
        f"On-demand verification task {task_id} submitted for "
        f"{request.github_url}@{git_ref} ({request.deployment_name})"
    )
    return VerifyResponse(task_id=task_id)


@router.get("/verify/{task_id}/results")
async def get_verification_results(
    task_id: str,
    service: VerificationService = Depends(get_verification_service),
):
    """Proxy a results request to the backend, passing its status through"""
    if service.poller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Backend verification service not configured",
        )

    try:
        backend_status, body = await service.poller.fetch_raw(task_id)
    except AuthenticationError as e:
        logger.error(f"Failed to get auth token for polling: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to authenticate",
        )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"Failed to poll backend: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to contact backend",
        )

    return Response(content=body, status_code=backend_status, media_type="application/json")


@router.post("/apps/{app_id}/verify", response_model=AppVerificationResponse)
async def verify_app_now(
    app_id: str,
    service: VerificationService = Depends(get_verification_service),
):
    """Re-verify every deployment of one app immediately"""
    try:
        parsed_id = int(app_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid app ID")

    if service.scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Backend verification service not configured",
        )

    try:
        outcomes = await service.scheduler.verify_now(parsed_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")

    return AppVerificationResponse(
        app_id=parsed_id,
        deployments={name: outcome.value for name, outcome in outcomes.items()},
    )
