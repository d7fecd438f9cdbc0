"""
Configuration settings for the application
"""

import os
import sys
from typing import List, Optional
from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings


GITHUB_URL_PREFIX = "https://github.com/"


class GitHubRepo(BaseModel):
    """A GitHub repository pinned to a branch, tag, or commit ref."""

    url: str
    ref: str


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = os.getenv("APP_NAME", "ROFL Registry")
    APP_DEBUG: bool = os.getenv("APP_DEBUG", "False").lower() == "true"
    APP_ENV: str = os.getenv("APP_ENV", "development")
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", "8080"))

    # Logging
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./data/rofl-registry.db")

    # Apps registry
    APPS_REGISTRY_URL: str = os.getenv(
        "APPS_REGISTRY_URL",
        "https://raw.githubusercontent.com/ptrus/rofl-attestations/master/apps.yaml",
    )
    # Used when the registry cannot be fetched at startup
    APPS_FALLBACK_REPOS: List[GitHubRepo] = []

    # Outbound HTTP limits
    HTTP_REQUEST_TIMEOUT_SECONDS: int = int(os.getenv("HTTP_REQUEST_TIMEOUT_SECONDS", "30"))
    MANIFEST_MAX_BYTES: int = int(os.getenv("MANIFEST_MAX_BYTES", str(10 * 1024 * 1024)))
    REGISTRY_MAX_BYTES: int = int(os.getenv("REGISTRY_MAX_BYTES", str(1024 * 1024)))

    # Verification worker
    WORKER_ENABLED: bool = os.getenv("WORKER_ENABLED", "False").lower() == "true"
    WORKER_BACKEND_URL: str = os.getenv("WORKER_BACKEND_URL", "")
    WORKER_APP_INTERVAL_SECONDS: int = int(
        os.getenv("WORKER_APP_INTERVAL_SECONDS", "60")
    )  # 1 minute between apps
    WORKER_CYCLE_INTERVAL_SECONDS: Optional[int] = None  # Defaults to the app interval
    WORKER_POLL_INTERVAL_SECONDS: int = int(os.getenv("WORKER_POLL_INTERVAL_SECONDS", "5"))
    WORKER_POLL_TIMEOUT_SECONDS: int = int(
        os.getenv("WORKER_POLL_TIMEOUT_SECONDS", "300")
    )  # 5 minutes

    # SIWE authentication against the verification backend (no key = anonymous)
    WORKER_PRIVATE_KEY: Optional[str] = os.getenv("WORKER_PRIVATE_KEY")
    WORKER_SIWE_DOMAIN: str = os.getenv("WORKER_SIWE_DOMAIN", "localhost")
    WORKER_CHAIN_ID: int = int(os.getenv("WORKER_CHAIN_ID", str(0x5AFF)))  # Sapphire testnet
    AUTH_TOKEN_LIFETIME_SECONDS: int = int(
        os.getenv("AUTH_TOKEN_LIFETIME_SECONDS", str(11 * 3600))
    )  # Backend issues 12 hour tokens
    AUTH_TOKEN_REFRESH_MARGIN_SECONDS: int = int(
        os.getenv("AUTH_TOKEN_REFRESH_MARGIN_SECONDS", "300")
    )

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        # Ignore unknown environment variables to avoid validation errors
        # when optional/deprecated flags are present in .env
        "extra": "ignore",
    }

    @field_validator("APPS_FALLBACK_REPOS")
    @classmethod
    def validate_fallback_repos(cls, v: List[GitHubRepo]) -> List[GitHubRepo]:
        """Only accept https://github.com/owner/repo URLs with a ref"""
        for i, repo in enumerate(v):
            if not repo.url:
                raise ValueError(f"APPS_FALLBACK_REPOS[{i}]: URL cannot be empty")
            if not repo.url.startswith(GITHUB_URL_PREFIX):
                raise ValueError(
                    f"APPS_FALLBACK_REPOS[{i}]: invalid GitHub URL {repo.url!r} "
                    f"(must start with {GITHUB_URL_PREFIX})"
                )
            parts = repo.url[len(GITHUB_URL_PREFIX):]
            if not parts or "/" not in parts:
                raise ValueError(
                    f"APPS_FALLBACK_REPOS[{i}]: invalid GitHub URL {repo.url!r} "
                    "(must be https://github.com/owner/repo)"
                )
            if not repo.ref:
                raise ValueError(f"APPS_FALLBACK_REPOS[{i}]: ref cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_worker_settings(self) -> "Settings":
        """
        Validate verification worker settings at startup.

        Interval checks only apply when the worker is enabled, so a disabled
        worker never blocks the API from starting.
        """
        if self.WORKER_CYCLE_INTERVAL_SECONDS is None:
            object.__setattr__(
                self, "WORKER_CYCLE_INTERVAL_SECONDS", self.WORKER_APP_INTERVAL_SECONDS
            )

        if not self.WORKER_ENABLED:
            return self

        errors = []
        if not self.WORKER_BACKEND_URL:
            errors.append("WORKER_BACKEND_URL cannot be empty when the worker is enabled")
        for name in (
            "WORKER_APP_INTERVAL_SECONDS",
            "WORKER_CYCLE_INTERVAL_SECONDS",
            "WORKER_POLL_INTERVAL_SECONDS",
            "WORKER_POLL_TIMEOUT_SECONDS",
        ):
            value = getattr(self, name)
            if value <= 0:
                errors.append(f"{name} must be positive (got {value})")

        if not self.WORKER_PRIVATE_KEY:
            print(
                "\033[93mWORKER_PRIVATE_KEY not set: verification requests will be "
                "submitted without authentication\033[0m",
                file=sys.stderr,
            )

        if errors:
            for error in errors:
                print(f"\033[91m{error}\033[0m", file=sys.stderr)
            raise ValueError(
                "Worker configuration is invalid. See above errors. "
                "Fix the configuration before starting the application."
            )

        return self


# Global settings instance
settings = Settings()
