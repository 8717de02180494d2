"""Configuration loading and reconciler wiring."""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from certissuer.errors import ConfigError
from certissuer.models.config import AppConfig
from certissuer.services.certificate_request_reconciler import CertificateRequestReconciler
from certissuer.services.event_recorder import EventRecorder, LoggingEventRecorder
from certissuer.services.issuer_reconciler import IssuerReconciler
from certissuer.services.registry import IssuerRegistry, default_registry, resolver_for_scope
from certissuer.services.resource_client import ResourceClient
from certissuer.services.yaml_service import YAMLService
from certissuer.signer.example import ExampleSigner, example_health_checker_builder
from certissuer.signer.interfaces import HealthCheckerBuilder, SignerBuilder

logger = logging.getLogger("certissuer")

SERVICE_ACCOUNT_NAMESPACE_FILE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")


def get_config(path: Path = Path("config.yaml")) -> AppConfig:
    """
    Get application configuration.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Application configuration

    Raises:
        ConfigError: If the file is missing or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"{path} not found")

    try:
        config_data = YAMLService.load_yaml(path)
        return AppConfig(**config_data)
    except (yaml.YAMLError, ValidationError) as e:
        raise ConfigError(f"invalid configuration in {path}: {e}") from e


def resolve_cluster_resource_namespace(
    config: AppConfig, namespace_file: Path = SERVICE_ACCOUNT_NAMESPACE_FILE
) -> str:
    """
    Namespace holding Secrets of cluster-scoped issuers.

    The configured value wins; otherwise the namespace the controller runs in
    is read from the service account mount.

    Args:
        config: Application configuration
        namespace_file: Service account namespace file

    Returns:
        Namespace name

    Raises:
        ConfigError: If no namespace is configured and none can be detected
    """
    if config.controller.cluster_resource_namespace:
        return config.controller.cluster_resource_namespace

    try:
        namespace = namespace_file.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"cluster resource namespace not configured and not running in a cluster: {e}") from e

    if not namespace:
        raise ConfigError(f"cluster resource namespace not configured and {namespace_file} is empty")
    logger.info(f"Using cluster resource namespace {namespace} from {namespace_file}")
    return namespace


def get_registry(config: AppConfig) -> IssuerRegistry:
    """
    Get the issuer registry for the configured API group.

    Args:
        config: Application configuration

    Returns:
        Registry serving Issuer and ClusterIssuer
    """
    return default_registry(config.controller.group)


def get_example_signer_builder(config: AppConfig) -> SignerBuilder:
    """
    Signer builder for the demo CA using the configured signer settings.

    Args:
        config: Application configuration

    Returns:
        Signer builder
    """
    settings = config.signer

    def build(spec, secret_data):
        return ExampleSigner(ttl=settings.ttl, usages=settings.usages, backdate=settings.backdate)

    return build


def get_issuer_reconcilers(
    config: AppConfig,
    client: ResourceClient,
    health_checker_builder: HealthCheckerBuilder = example_health_checker_builder,
    recorder: Optional[EventRecorder] = None,
    cluster_resource_namespace: Optional[str] = None,
) -> dict[str, IssuerReconciler]:
    """
    Get one issuer reconciler per registered issuer kind.

    Args:
        config: Application configuration
        client: Resource client
        health_checker_builder: Health checker builder for the signing backend
        recorder: Event recorder (defaults to logging events)
        cluster_resource_namespace: Overrides namespace detection

    Returns:
        Issuer reconcilers by kind

    Raises:
        ConfigError: If the cluster resource namespace cannot be determined
    """
    registry = get_registry(config)
    recorder = recorder or LoggingEventRecorder()
    if cluster_resource_namespace is None:
        cluster_resource_namespace = resolve_cluster_resource_namespace(config)

    reconcilers = {}
    for kind in registry.kinds():
        model = registry.lookup(kind)
        reconcilers[kind] = IssuerReconciler(
            kind=kind,
            client=client,
            registry=registry,
            health_checker_builder=health_checker_builder,
            secret_namespace=resolver_for_scope(model.scope, cluster_resource_namespace),
            recorder=recorder,
            health_check_interval=config.controller.health_check_interval,
        )
    return reconcilers


def get_certificate_request_reconciler(
    config: AppConfig,
    client: ResourceClient,
    signer_builder: Optional[SignerBuilder] = None,
    recorder: Optional[EventRecorder] = None,
    cluster_resource_namespace: Optional[str] = None,
) -> CertificateRequestReconciler:
    """
    Get the CertificateRequest reconciler.

    Args:
        config: Application configuration
        client: Resource client
        signer_builder: Signer builder (defaults to the demo CA signer)
        recorder: Event recorder (defaults to logging events)
        cluster_resource_namespace: Overrides namespace detection

    Returns:
        CertificateRequest reconciler

    Raises:
        ConfigError: If the cluster resource namespace cannot be determined
    """
    if cluster_resource_namespace is None:
        cluster_resource_namespace = resolve_cluster_resource_namespace(config)

    return CertificateRequestReconciler(
        client=client,
        registry=get_registry(config),
        signer_builder=signer_builder or get_example_signer_builder(config),
        recorder=recorder or LoggingEventRecorder(),
        cluster_resource_namespace=cluster_resource_namespace,
        require_approved_condition=config.controller.require_approved_condition,
        max_retry_duration=config.controller.max_retry_duration,
    )
