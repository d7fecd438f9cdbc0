"""
Health Check Endpoints

Provides:
- Basic HTTP liveness
- Database connectivity
- Verification worker state
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.db.database import async_session_factory
from app.services.verification.service import VerificationService

from .apps import get_verification_service

logger = logging.getLogger(__name__)
router = APIRouter()

APP_VERSION = "1.0.0"


class HealthChecker:
    """Collects component health for the detailed endpoint"""

    async def check_database_health(self) -> Dict[str, Any]:
        """Check database connectivity"""
        start_time = time.time()

        try:
            async with async_session_factory() as session:
                await session.execute(select(1))
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        duration = time.time() - start_time
        return {
            "status": "healthy",
            "response_time_ms": round(duration * 1000, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def check_worker_health(self, service: VerificationService) -> Dict[str, Any]:
        """
        Report verification worker state.

        An enabled worker that is not running is unhealthy; a disabled or
        unconfigured worker is reported as such without failing the check.
        """
        details = service.get_status()
        if not details["worker_enabled"]:
            state = "disabled"
        elif not details["backend_configured"]:
            state = "unconfigured"
        elif details["worker_running"]:
            state = "healthy"
        else:
            state = "unhealthy"
        return {"status": state, "details": details}


health_checker = HealthChecker()


@router.get("/health")
async def basic_health_check(
    service: VerificationService = Depends(get_verification_service),
):
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker": service.get_status(),
    }


@router.get("/health/detailed")
async def detailed_health_check(
    service: VerificationService = Depends(get_verification_service),
):
    """Health of the database and the verification worker"""
    database = await health_checker.check_database_health()
    worker = health_checker.check_worker_health(service)

    overall = "healthy"
    if database["status"] != "healthy" or worker["status"] == "unhealthy":
        overall = "unhealthy"

    return {
        "status": overall,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {"database": database, "worker": worker},
    }
