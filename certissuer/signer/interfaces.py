"""Interfaces implemented by signing backends."""

from abc import ABC, abstractmethod
from typing import Callable

from certissuer.models.issuer import IssuerSpec
from certissuer.signer.template import CertificateTemplate


class HealthChecker(ABC):
    """Checks that a signing backend is reachable and usable."""

    @abstractmethod
    def check(self) -> None:
        """
        Run the health check.

        Raises:
            Exception: If the backend is unhealthy
        """


class Signer(ABC):
    """Issues certificates for templates built from CertificateRequests."""

    @abstractmethod
    def sign(self, template: CertificateTemplate) -> bytes:
        """
        Sign a certificate template.

        Args:
            template: Certificate template built from the request CSR

        Returns:
            Signed certificate bytes, stored verbatim on the request status

        Raises:
            PermanentError: To stop further attempts for this request
            Exception: Any other failure is retried
        """


# Builders receive the issuer spec and the data of its credentials Secret
HealthCheckerBuilder = Callable[[IssuerSpec, dict[str, bytes]], HealthChecker]
SignerBuilder = Callable[[IssuerSpec, dict[str, bytes]], Signer]
