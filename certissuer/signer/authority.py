"""Policy-based certificate authority."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519

from certissuer.errors import SignerExpiredError, SigningError
from certissuer.signer.policy import SigningPolicy
from certissuer.signer.template import EXTENDED_KEY_USAGE_OIDS, KEY_USAGE_FLAGS, CertificateTemplate

logger = logging.getLogger("certissuer")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CertificateAuthority:
    """Signs certificate templates with a CA key pair.

    The CA never issues a certificate that outlives its own certificate and
    refuses to sign once it has expired. Instances hold only immutable key
    material, so ``sign`` may be called concurrently.
    """

    def __init__(
        self,
        certificate: x509.Certificate,
        private_key,
        backdate: timedelta = timedelta(0),
        now: Optional[Callable[[], datetime]] = None,
        raw_cert: Optional[bytes] = None,
        raw_key: Optional[bytes] = None,
    ):
        """
        Initialize certificate authority.

        Args:
            certificate: CA certificate
            private_key: CA private key matching the certificate
            backdate: Subtracted from the signing time to get notBefore (clock skew tolerance)
            now: Clock function returning an aware datetime
            raw_cert: Optional PEM the certificate was loaded from (to detect changes)
            raw_key: Optional PEM the key was loaded from (to detect changes)
        """
        self.certificate = certificate
        self.private_key = private_key
        self.backdate = backdate
        self.now = now or _utc_now
        self.raw_cert = raw_cert
        self.raw_key = raw_key

    @classmethod
    def from_pem(
        cls,
        cert_pem: bytes,
        key_pem: bytes,
        password: Optional[bytes] = None,
        backdate: timedelta = timedelta(0),
        now: Optional[Callable[[], datetime]] = None,
    ) -> "CertificateAuthority":
        """
        Load a certificate authority from PEM material.

        Args:
            cert_pem: PEM-encoded CA certificate
            key_pem: PEM-encoded CA private key
            password: Key password, if the key is encrypted
            backdate: notBefore backdate
            now: Clock function

        Returns:
            Certificate authority

        Raises:
            ValueError: If the certificate or key cannot be loaded
        """
        certificate = x509.load_pem_x509_certificate(cert_pem)
        private_key = serialization.load_pem_private_key(key_pem, password=password)
        return cls(
            certificate=certificate,
            private_key=private_key,
            backdate=backdate,
            now=now,
            raw_cert=cert_pem,
            raw_key=key_pem,
        )

    @property
    def not_after(self) -> datetime:
        """Expiry of the CA certificate."""
        return self.certificate.not_valid_after_utc

    def sign(self, template: CertificateTemplate, policy: SigningPolicy) -> bytes:
        """
        Sign a certificate template after applying a signing policy.

        Args:
            template: Certificate template (not modified)
            policy: Signing policy to apply

        Returns:
            DER-encoded certificate issued by this CA

        Raises:
            SignerExpiredError: If the CA has expired
            PolicyError: If the template violates the policy
            SigningError: If the certificate cannot be built or signed
        """
        now = self.now()
        ca_not_after = self.not_after

        not_before = now - self.backdate
        if not_before >= ca_not_after:
            raise SignerExpiredError(f"the signer has expired: NotAfter={ca_not_after.isoformat()}")

        template = template.model_copy(update={"not_before": not_before})
        template = policy.apply(template, now)

        if template.not_after is None or template.not_after >= ca_not_after:
            template = template.model_copy(update={"not_after": ca_not_after})
        if now >= ca_not_after:
            raise SignerExpiredError("refusing to sign a certificate that expired in the past")

        try:
            certificate = self._build(template).sign(self.private_key, self._signature_hash())
        except (TypeError, ValueError) as e:
            raise SigningError(f"failed to sign certificate: {e}") from e

        logger.debug(f"Signed certificate serial {certificate.serial_number:X} valid until {template.not_after}")
        return certificate.public_bytes(serialization.Encoding.DER)

    def _build(self, template: CertificateTemplate) -> x509.CertificateBuilder:
        """Turn a template into a certificate builder issued by this CA."""
        serial_number = template.serial_number or x509.random_serial_number()

        builder = (
            x509.CertificateBuilder()
            .subject_name(template.subject)
            .issuer_name(self.certificate.subject)
            .public_key(template.public_key)
            .serial_number(serial_number)
            .not_valid_before(template.not_before)
            .not_valid_after(template.not_after)
            .add_extension(x509.BasicConstraints(ca=template.is_ca, path_length=None), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(template.public_key), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(self.certificate.public_key()),
                critical=False,
            )
        )

        key_usages = template.key_usage_names()
        if key_usages:
            flags = {flag: False for flag in KEY_USAGE_FLAGS.values()}
            for usage in key_usages:
                flags[KEY_USAGE_FLAGS[usage]] = True
            builder = builder.add_extension(
                x509.KeyUsage(encipher_only=False, decipher_only=False, **flags),
                critical=True,
            )

        extended_key_usages = template.extended_key_usage_names()
        if extended_key_usages:
            builder = builder.add_extension(
                x509.ExtendedKeyUsage([EXTENDED_KEY_USAGE_OIDS[u] for u in extended_key_usages]),
                critical=False,
            )

        if template.sans:
            builder = builder.add_extension(x509.SubjectAlternativeName(template.sans), critical=False)

        return builder

    def _signature_hash(self):
        """Digest for the CA key type (EdDSA keys sign without a separate digest)."""
        if isinstance(self.private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
            return None
        return hashes.SHA256()
