"""Data models for the certificate issuer controller."""

from .certificate_request import (
    CertificateRequest,
    CertificateRequestReason,
    CertificateRequestSpec,
    CertificateRequestStatus,
    IssuerRef,
)
from .condition import CONDITION_APPROVED, CONDITION_DENIED, CONDITION_READY, Condition, ConditionStatus
from .config import AppConfig
from .event import Event, EventType, ReconcileResult
from .issuer import GROUP, ClusterIssuer, Issuer, IssuerBase, IssuerScope, IssuerSpec, IssuerStatus
from .meta import NamespacedName, ObjectMeta
from .secret import Secret

__all__ = [
    "AppConfig",
    "CertificateRequest",
    "CertificateRequestReason",
    "CertificateRequestSpec",
    "CertificateRequestStatus",
    "ClusterIssuer",
    "Condition",
    "ConditionStatus",
    "CONDITION_APPROVED",
    "CONDITION_DENIED",
    "CONDITION_READY",
    "Event",
    "EventType",
    "GROUP",
    "Issuer",
    "IssuerBase",
    "IssuerRef",
    "IssuerScope",
    "IssuerSpec",
    "IssuerStatus",
    "NamespacedName",
    "ObjectMeta",
    "ReconcileResult",
    "Secret",
]
