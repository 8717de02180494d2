"""Signing policies applied to certificate templates before signing."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Iterable, Optional

from certissuer.errors import PolicyError
from certissuer.models.certificate_request import DEFAULT_USAGES, FORBIDDEN_EKU, FORBIDDEN_KEY_USAGE
from certissuer.signer.template import EXTENDED_KEY_USAGE_OIDS, KEY_USAGE_FLAGS, CertificateTemplate

logger = logging.getLogger("certissuer")


def validate_usages(usages: Iterable[str]) -> list[str]:
    """
    Check usage names for an end-entity certificate.

    Args:
        usages: Key usage and extended key usage names

    Returns:
        The usages as a list

    Raises:
        PolicyError: If a name is unknown or reserved for CAs
    """
    usages = list(usages)
    for usage in usages:
        if usage in FORBIDDEN_KEY_USAGE:
            raise PolicyError(f"key usage '{usage}' is forbidden for end-entity certificates (CA-only)")
        if usage in FORBIDDEN_EKU:
            raise PolicyError(f"extended key usage '{usage}' is forbidden")
        if usage not in KEY_USAGE_FLAGS and usage not in EXTENDED_KEY_USAGE_OIDS:
            raise PolicyError(f"unknown key usage '{usage}'")
    return usages


class SigningPolicy(ABC):
    """A transformation over a certificate template."""

    @abstractmethod
    def apply(self, template: CertificateTemplate, now: datetime) -> CertificateTemplate:
        """
        Apply the policy.

        Args:
            template: Template to check and rewrite (not modified)
            now: Signing time

        Returns:
            A new template

        Raises:
            PolicyError: If the template cannot satisfy the policy
        """


class PermissiveSigningPolicy(SigningPolicy):
    """Issue end-entity certificates for up to ``ttl``.

    The requested duration is honoured when shorter than ``ttl``. When
    ``usages`` is set it replaces the requested usages; otherwise the requested
    usages are kept, falling back to the defaults when none were requested.
    """

    def __init__(self, ttl: timedelta, usages: Optional[list[str]] = None):
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self.usages = list(usages) if usages is not None else None

    def apply(self, template: CertificateTemplate, now: datetime) -> CertificateTemplate:
        ttl = self.ttl
        if template.duration is not None and template.duration < ttl:
            ttl = template.duration

        if self.usages is not None:
            usages = self.usages
        else:
            usages = template.usages or DEFAULT_USAGES

        return template.model_copy(
            update={
                "usages": validate_usages(usages),
                "not_after": now + ttl,
                "is_ca": False,
            }
        )


class UsageRestrictionPolicy(SigningPolicy):
    """Reject templates asking for usages outside an allowed set."""

    def __init__(self, allowed: Iterable[str]):
        self.allowed = set(allowed)

    def apply(self, template: CertificateTemplate, now: datetime) -> CertificateTemplate:
        disallowed = sorted(set(template.usages) - self.allowed)
        if disallowed:
            raise PolicyError(f"usages not permitted by policy: {', '.join(disallowed)}")
        return template


class ChainedSigningPolicy(SigningPolicy):
    """Apply several policies in order."""

    def __init__(self, policies: Iterable[SigningPolicy]):
        self.policies = list(policies)

    def apply(self, template: CertificateTemplate, now: datetime) -> CertificateTemplate:
        for policy in self.policies:
            template = policy.apply(template, now)
        return template
