"""Service layer: condition handling, persistence, events and reconcilers."""

from .certificate_request_reconciler import CertificateRequestReconciler
from .condition_service import ConditionService
from .event_recorder import EventRecorder, InMemoryEventRecorder, LoggingEventRecorder
from .issuer_reconciler import IssuerReconciler
from .registry import IssuerRegistry, default_registry, fixed_namespace, own_namespace, resolver_for_scope
from .resource_client import InMemoryResourceClient, ResourceClient, YAMLResourceClient
from .status_commit import StatusCommit
from .yaml_service import YAMLService

__all__ = [
    "CertificateRequestReconciler",
    "ConditionService",
    "EventRecorder",
    "InMemoryEventRecorder",
    "InMemoryResourceClient",
    "IssuerReconciler",
    "IssuerRegistry",
    "LoggingEventRecorder",
    "ResourceClient",
    "StatusCommit",
    "YAMLResourceClient",
    "YAMLService",
    "default_registry",
    "fixed_namespace",
    "own_namespace",
    "resolver_for_scope",
]
