"""Application configuration models."""

from datetime import timedelta
from typing import Optional

from pydantic import BaseModel, Field

from .certificate_request import DEFAULT_USAGES
from .issuer import GROUP


class ControllerSettings(BaseModel):
    """Settings consumed by the reconcilers."""

    group: str = GROUP
    # Namespace holding Secrets referenced by ClusterIssuers
    cluster_resource_namespace: str = ""
    # Signing failures older than this are no longer retried
    max_retry_duration: timedelta = timedelta(minutes=1)
    # Wait for an Approved condition before signing
    require_approved_condition: bool = True
    health_check_interval: timedelta = timedelta(minutes=1)


class SignerSettings(BaseModel):
    """Settings for the bundled example signer."""

    backdate: timedelta = timedelta(minutes=5)
    ttl: timedelta = timedelta(days=365)
    usages: list[str] = Field(default_factory=lambda: DEFAULT_USAGES.copy())


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class AppConfig(BaseModel):
    """Main application configuration."""

    controller: ControllerSettings = ControllerSettings()
    signer: SignerSettings = SignerSettings()
    logging: LoggingSettings = LoggingSettings()
