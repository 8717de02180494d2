"""Certificate templates built from certificate signing requests."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID
from pydantic import BaseModel, Field

from certissuer.errors import InvalidRequestError

logger = logging.getLogger("certissuer")

# Key usage names mapped to cryptography.x509.KeyUsage arguments
KEY_USAGE_FLAGS = {
    "digitalSignature": "digital_signature",
    "nonRepudiation": "content_commitment",
    "keyEncipherment": "key_encipherment",
    "dataEncipherment": "data_encipherment",
    "keyAgreement": "key_agreement",
    "keyCertSign": "key_cert_sign",
    "cRLSign": "crl_sign",
}

# Extended key usage names mapped to OIDs
EXTENDED_KEY_USAGE_OIDS = {
    "serverAuth": ExtendedKeyUsageOID.SERVER_AUTH,
    "clientAuth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "codeSigning": ExtendedKeyUsageOID.CODE_SIGNING,
    "emailProtection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "timeStamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "OCSPSigning": ExtendedKeyUsageOID.OCSP_SIGNING,
}


class CertificateTemplate(BaseModel):
    """Everything needed to issue a certificate except the issuer.

    Templates are treated as immutable values: policies and the certificate
    authority return modified copies instead of editing in place.
    """

    subject: x509.Name
    public_key: Any
    sans: list[x509.GeneralName] = Field(default_factory=list)
    serial_number: Optional[int] = None
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    usages: list[str] = Field(default_factory=list)
    is_ca: bool = False
    duration: Optional[timedelta] = None  # Requested TTL

    class Config:
        """Pydantic config."""

        arbitrary_types_allowed = True

    @classmethod
    def from_csr(
        cls,
        csr_pem: bytes,
        duration: Optional[timedelta] = None,
        usages: Optional[list[str]] = None,
        is_ca: bool = False,
    ) -> "CertificateTemplate":
        """
        Build a template from a PEM-encoded PKCS#10 request.

        Args:
            csr_pem: PEM-encoded CSR
            duration: Requested certificate lifetime
            usages: Requested key usage and extended key usage names
            is_ca: Whether a CA certificate is requested

        Returns:
            Certificate template carrying the CSR subject, key and SANs

        Raises:
            InvalidRequestError: If the CSR cannot be decoded or its signature is invalid
        """
        try:
            csr = x509.load_pem_x509_csr(csr_pem)
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(f"failed to decode certificate request: {e}") from e

        if not csr.is_signature_valid:
            raise InvalidRequestError("certificate request has an invalid signature")

        try:
            san_ext = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            sans = list(san_ext.value)
        except x509.ExtensionNotFound:
            sans = []

        return cls(
            subject=csr.subject,
            public_key=csr.public_key(),
            sans=sans,
            usages=list(usages or []),
            is_ca=is_ca,
            duration=duration,
        )

    def key_usage_names(self) -> list[str]:
        """Requested names that are plain key usages."""
        return [u for u in self.usages if u in KEY_USAGE_FLAGS]

    def extended_key_usage_names(self) -> list[str]:
        """Requested names that are extended key usages."""
        return [u for u in self.usages if u in EXTENDED_KEY_USAGE_OIDS]
