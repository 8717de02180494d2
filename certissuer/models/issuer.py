"""Issuer and ClusterIssuer resource models."""

from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, Field

from .condition import Condition
from .meta import Resource

# API group served by this controller
GROUP = "issuer.homelabpki.io"


class IssuerScope(str, Enum):
    """Resource scope of an issuer kind."""

    NAMESPACED = "Namespaced"
    CLUSTER = "Cluster"


class IssuerSpec(BaseModel):
    """Desired state of an issuer."""

    url: str = ""  # Base URL of the signing service
    auth_secret_name: str = ""  # Secret holding the signer credentials

    class Config:
        """Pydantic config."""

        json_schema_extra = {
            "example": {
                "url": "https://signer.example.com/api",
                "auth_secret_name": "issuer1-credentials",
            }
        }


class IssuerStatus(BaseModel):
    """Observed state of an issuer."""

    conditions: list[Condition] = Field(default_factory=list)


class IssuerBase(Resource):
    """Common shape of Issuer and ClusterIssuer.

    Reconcilers only ever look at ``spec``, ``status`` and ``scope``, so the
    same logic serves both kinds.
    """

    scope: ClassVar[IssuerScope]

    spec: IssuerSpec = Field(default_factory=IssuerSpec)
    status: IssuerStatus = Field(default_factory=IssuerStatus)


class Issuer(IssuerBase):
    """Namespaced issuer; its Secret lives in its own namespace."""

    kind: ClassVar[str] = "Issuer"
    scope: ClassVar[IssuerScope] = IssuerScope.NAMESPACED


class ClusterIssuer(IssuerBase):
    """Cluster-scoped issuer; its Secret lives in the cluster resource namespace."""

    kind: ClassVar[str] = "ClusterIssuer"
    scope: ClassVar[IssuerScope] = IssuerScope.CLUSTER
