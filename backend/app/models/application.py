"""
Application model: a ROFL app tracked by the registry
"""
from typing import Any, Dict
from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import relationship

from app.db.database import Base, utc_now


class Application(Base):
    """A ROFL application identified by its GitHub repository URL"""

    __tablename__ = "apps"

    id = Column(Integer, primary_key=True, index=True)
    github_url = Column(String, unique=True, index=True, nullable=False)
    git_ref = Column(String, nullable=False)  # Branch, tag, or commit ref to verify
    rofl_yaml = Column(Text, nullable=True)  # Raw rofl.yaml content, refreshed every cycle

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    deployments = relationship(
        "Deployment",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="Deployment.deployment_name",
        lazy="noload",
    )

    def __repr__(self):
        return f"<Application(id={self.id}, github_url='{self.github_url}', git_ref='{self.git_ref}')>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "github_url": self.github_url,
            "git_ref": self.git_ref,
            "rofl_yaml": self.rofl_yaml,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
