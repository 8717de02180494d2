"""Issuer kind registry and Secret namespace resolution."""

import logging
from typing import Callable, Iterable, Optional, Type

from certissuer.errors import ConfigError, IssuerRefError
from certissuer.models.issuer import GROUP, ClusterIssuer, Issuer, IssuerBase, IssuerScope

logger = logging.getLogger("certissuer")

# Returns the namespace holding the Secret of an issuer
NamespaceResolver = Callable[[IssuerBase], str]


class IssuerRegistry:
    """Maps issuer kinds of one API group to their models."""

    def __init__(self, group: str = GROUP, models: Optional[Iterable[Type[IssuerBase]]] = None):
        self.group = group
        self._models: dict[str, Type[IssuerBase]] = {}
        for model in models or []:
            self.register(model)

    def register(self, model: Type[IssuerBase]) -> None:
        """
        Register an issuer model under its kind.

        Args:
            model: Issuer model class with ``kind`` and ``scope`` set

        Raises:
            ValueError: If the model has no kind or the kind is already registered
        """
        if not model.kind:
            raise ValueError(f"{model.__name__} does not declare a kind")
        if model.kind in self._models:
            raise ValueError(f"Issuer kind already registered: {model.kind}")
        self._models[model.kind] = model
        logger.debug(f"Registered issuer kind {model.kind} ({model.scope.value})")

    def lookup(self, kind: str) -> Type[IssuerBase]:
        """
        Find the model for an issuer kind.

        Args:
            kind: Issuer kind, e.g. "ClusterIssuer"

        Returns:
            Issuer model class

        Raises:
            IssuerRefError: If the kind is not registered
        """
        try:
            return self._models[kind]
        except KeyError:
            raise IssuerRefError(f"unrecognised kind {kind!r} in group {self.group!r}") from None

    def kinds(self) -> list[str]:
        """Registered issuer kinds."""
        return list(self._models)

    def __contains__(self, kind: str) -> bool:
        return kind in self._models


def default_registry(group: str = GROUP) -> IssuerRegistry:
    """Registry serving Issuer and ClusterIssuer."""
    return IssuerRegistry(group, [Issuer, ClusterIssuer])


def own_namespace(issuer: IssuerBase) -> str:
    """Secrets of namespaced issuers live next to the issuer."""
    return issuer.metadata.namespace


def fixed_namespace(namespace: str) -> NamespaceResolver:
    """Resolver that always returns ``namespace``."""

    def resolve(issuer: IssuerBase) -> str:
        return namespace

    return resolve


def resolver_for_scope(scope: IssuerScope, cluster_resource_namespace: str) -> NamespaceResolver:
    """
    Namespace resolver for an issuer scope.

    Args:
        scope: Scope of the issuer kind
        cluster_resource_namespace: Namespace holding Secrets of cluster-scoped issuers

    Returns:
        Namespace resolver

    Raises:
        ConfigError: If a cluster-scoped resolver is requested without a namespace
    """
    if scope == IssuerScope.NAMESPACED:
        return own_namespace
    if not cluster_resource_namespace:
        raise ConfigError("cluster resource namespace is required for cluster-scoped issuers")
    return fixed_namespace(cluster_resource_namespace)
