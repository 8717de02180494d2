"""Certificate signing: templates, policies, the CA and signer interfaces."""

from .authority import CertificateAuthority
from .example import ExampleHealthChecker, ExampleSigner, example_health_checker_builder, example_signer_builder
from .interfaces import HealthChecker, HealthCheckerBuilder, Signer, SignerBuilder
from .policy import ChainedSigningPolicy, PermissiveSigningPolicy, SigningPolicy, UsageRestrictionPolicy
from .template import CertificateTemplate

__all__ = [
    "CertificateAuthority",
    "CertificateTemplate",
    "ChainedSigningPolicy",
    "ExampleHealthChecker",
    "ExampleSigner",
    "HealthChecker",
    "HealthCheckerBuilder",
    "PermissiveSigningPolicy",
    "Signer",
    "SignerBuilder",
    "SigningPolicy",
    "UsageRestrictionPolicy",
    "example_health_checker_builder",
    "example_signer_builder",
]
