"""
Deployment model: per-network verification state of an application
"""
from enum import Enum
from typing import Any, Dict
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from app.db.database import Base, utc_now


class VerificationStatus(str, Enum):
    """Verification status of a single deployment"""

    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class Deployment(Base):
    """A named deployment (mainnet, testnet, ...) of an application"""

    __tablename__ = "deployments"
    __table_args__ = (
        UniqueConstraint("app_id", "deployment_name", name="uq_deployments_app_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    app_id = Column(
        Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    deployment_name = Column(String, nullable=False)
    commit_sha = Column(String, nullable=True)  # Git commit the backend built
    status = Column(String, nullable=False, default=VerificationStatus.PENDING.value, index=True)
    verification_msg = Column(Text, nullable=True)
    last_verified = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    application = relationship("Application", back_populates="deployments")

    def __repr__(self):
        return (
            f"<Deployment(app_id={self.app_id}, name='{self.deployment_name}', "
            f"status='{self.status}')>"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "app_id": self.app_id,
            "deployment_name": self.deployment_name,
            "commit_sha": self.commit_sha,
            "status": self.status,
            "verification_msg": self.verification_msg,
            "last_verified": self.last_verified.isoformat() if self.last_verified else None,
        }
