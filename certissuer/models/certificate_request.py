"""CertificateRequest resource models."""

from datetime import datetime, timedelta
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, Field, field_validator

from .condition import Condition
from .meta import Resource, assume_utc


# Forbidden Key Usage values for end-entity certificates (CA-only)
FORBIDDEN_KEY_USAGE = {"keyCertSign", "cRLSign"}

# Forbidden Extended Key Usage values
FORBIDDEN_EKU = {"anyExtendedKeyUsage"}

# Usages applied when a request does not name any
DEFAULT_USAGES = ["digitalSignature", "keyEncipherment", "serverAuth"]


class CertificateRequestReason(str, Enum):
    """Reasons used on the Ready condition of a CertificateRequest."""

    PENDING = "Pending"
    ISSUED = "Issued"
    DENIED = "Denied"
    FAILED = "Failed"


class IssuerRef(BaseModel):
    """Reference to the Issuer or ClusterIssuer that should sign a request."""

    name: str
    kind: str = "Issuer"
    group: str = ""


class CertificateRequestSpec(BaseModel):
    """Desired state of a CertificateRequest."""

    issuer_ref: IssuerRef
    request: bytes  # PEM-encoded PKCS#10 CSR
    duration: Optional[timedelta] = None
    usages: list[str] = Field(default_factory=list)
    is_ca: bool = False

    class Config:
        """Pydantic config."""

        ser_json_bytes = "base64"
        val_json_bytes = "base64"


class CertificateRequestStatus(BaseModel):
    """Observed state of a CertificateRequest."""

    conditions: list[Condition] = Field(default_factory=list)
    certificate: Optional[bytes] = None
    failure_time: Optional[datetime] = None

    class Config:
        """Pydantic config."""

        ser_json_bytes = "base64"
        val_json_bytes = "base64"

    @field_validator("failure_time")
    @classmethod
    def failure_time_utc(cls, v):
        """Read naive timestamps as UTC."""
        return assume_utc(v)


class CertificateRequest(Resource):
    """A pending certificate signing request that references an issuer."""

    kind: ClassVar[str] = "CertificateRequest"

    spec: CertificateRequestSpec
    status: CertificateRequestStatus = Field(default_factory=CertificateRequestStatus)
