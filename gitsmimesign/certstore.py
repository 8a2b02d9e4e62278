"""
Certificate store and signer selection.

The store is a directory of certificate and key files. PEM files may hold
any mix of certificates and private keys, PKCS#12 bundles are read without a
password. Keys are paired with certificates by public key, issuer chains are
built from the other certificates in the same directory.
"""

import logging
import re
from dataclasses import dataclass, field
from email.utils import parseaddr
from enum import Enum, IntEnum
from pathlib import Path
from typing import IO, List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from .errors import SignerLacksPrivateKeyError, SignerNotFoundError, UnsupportedAlgorithmError

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path.home() / ".gitsmimesign" / "certs"

PEM_SUFFIXES = {".pem", ".crt", ".cer", ".key"}
DER_SUFFIXES = {".der"}
PKCS12_SUFFIXES = {".p12", ".pfx"}

_PEM_BLOCK_RE = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----.+?-----END \1-----", re.DOTALL)


class PublicKeyAlgorithm(IntEnum):
    """OpenPGP public key algorithm ids (RFC 4880 9.1)"""

    RSA = 1
    ECDSA = 19


class HashAlgorithm(IntEnum):
    """OpenPGP hash algorithm ids (RFC 4880 9.4)"""

    SHA1 = 2
    SHA256 = 8
    SHA384 = 9
    SHA512 = 10


# asn1crypto digest algorithm names
HASH_NAMES = {
    HashAlgorithm.SHA1: "sha1",
    HashAlgorithm.SHA256: "sha256",
    HashAlgorithm.SHA384: "sha384",
    HashAlgorithm.SHA512: "sha512",
}

SIGNATURE_ALGORITHMS = {
    "1.2.840.10045.4.1": (PublicKeyAlgorithm.ECDSA, HashAlgorithm.SHA1),
    "1.2.840.113549.1.1.5": (PublicKeyAlgorithm.RSA, HashAlgorithm.SHA1),
    "1.2.840.10045.4.3.2": (PublicKeyAlgorithm.ECDSA, HashAlgorithm.SHA256),
    "1.2.840.113549.1.1.11": (PublicKeyAlgorithm.RSA, HashAlgorithm.SHA256),
    "1.2.840.10045.4.3.3": (PublicKeyAlgorithm.ECDSA, HashAlgorithm.SHA384),
    "1.2.840.113549.1.1.12": (PublicKeyAlgorithm.RSA, HashAlgorithm.SHA384),
    "1.2.840.10045.4.3.4": (PublicKeyAlgorithm.ECDSA, HashAlgorithm.SHA512),
    "1.2.840.113549.1.1.13": (PublicKeyAlgorithm.RSA, HashAlgorithm.SHA512),
}


def pgp_algorithm_codes(oid: str) -> Tuple[PublicKeyAlgorithm, HashAlgorithm]:
    """
    Map a certificate signature algorithm OID to GnuPG's codes.

    Raises:
        UnsupportedAlgorithmError: the OID is not in the table
    """
    try:
        return SIGNATURE_ALGORITHMS[oid]
    except KeyError:
        raise UnsupportedAlgorithmError(
            f"The certificate uses an unsupported signature algorithm: {oid}"
        ) from None


class IncludeOption(Enum):
    NONE = "none"
    END_CERT_ONLY = "end-cert-only"
    WHOLE_CHAIN = "whole-chain"
    EXCLUDE_ROOT = "exclude-root"
    UP_TO = "up-to"


@dataclass(frozen=True)
class IncludePolicy:
    """Which certificates travel with a signature"""

    option: IncludeOption
    limit: Optional[int] = None

    @classmethod
    def from_int(cls, value: int) -> "IncludePolicy":
        """
        Convert an --include-certs value.

        -2 excludes the root, -1 is the whole chain, 0 is none, 1 is the
        signer certificate only and N > 1 is up to N certificates starting
        with the signer's.
        """
        if value == -2:
            return cls(IncludeOption.EXCLUDE_ROOT)
        if value == -1:
            return cls(IncludeOption.WHOLE_CHAIN)
        if value == 0:
            return cls(IncludeOption.NONE)
        if value == 1:
            return cls(IncludeOption.END_CERT_ONLY)
        if value > 1:
            return cls(IncludeOption.UP_TO, value)
        raise ValueError(f"Invalid certificate include mode: {value}")

    def select(self, chain: List[x509.Certificate]) -> List[x509.Certificate]:
        """Pick certificates from a chain ordered signer first"""
        if self.option is IncludeOption.NONE:
            return []
        if self.option is IncludeOption.END_CERT_ONLY:
            return chain[:1]
        if self.option is IncludeOption.WHOLE_CHAIN:
            return list(chain)
        if self.option is IncludeOption.EXCLUDE_ROOT:
            if len(chain) > 1 and is_self_issued(chain[-1]):
                return chain[:-1]
            return list(chain)
        return chain[: self.limit]


EXCLUDE_ROOT = IncludePolicy(IncludeOption.EXCLUDE_ROOT)


def is_self_issued(certificate: x509.Certificate) -> bool:
    return certificate.issuer == certificate.subject


def thumbprint(certificate: x509.Certificate) -> str:
    """SHA-1 fingerprint as upper case hex"""
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


def subject_name(certificate: x509.Certificate) -> str:
    return certificate.subject.rfc4514_string()


def issuer_name(certificate: x509.Certificate) -> str:
    return certificate.issuer.rfc4514_string()


def email_addresses(certificate: x509.Certificate) -> List[str]:
    """E-mail addresses from the subject and the subjectAltName"""
    addresses = [
        attr.value
        for attr in certificate.subject.get_attributes_for_oid(NameOID.EMAIL_ADDRESS)
    ]
    try:
        san = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return addresses
    addresses.extend(san.value.get_values_for_type(x509.RFC822Name))
    return addresses


def _public_key_der(key) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


@dataclass
class Signer:
    """A certificate, its private key if known and its issuer chain"""

    certificate: x509.Certificate
    private_key: Optional[object] = None
    chain: List[x509.Certificate] = field(default_factory=list)

    @property
    def thumbprint(self) -> str:
        return thumbprint(self.certificate)

    @property
    def subject(self) -> str:
        return subject_name(self.certificate)

    @property
    def has_private_key(self) -> bool:
        return isinstance(self.private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey))

    @property
    def algorithm_codes(self) -> Tuple[PublicKeyAlgorithm, HashAlgorithm]:
        return pgp_algorithm_codes(self.certificate.signature_algorithm_oid.dotted_string)

    @property
    def full_chain(self) -> List[x509.Certificate]:
        return [self.certificate] + list(self.chain)


class CertificateStore:
    """
    Read-only view over a certificate directory.

    Use as a context manager; entries are loaded on entry and dropped on exit:

        with CertificateStore(path) as store:
            signer = store.find_signer("user@example.com")
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else DEFAULT_STORE_PATH
        self.certificates: List[x509.Certificate] = []
        self._keys: list = []

    def __enter__(self) -> "CertificateStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        self.certificates = []
        self._keys = []
        if not self.path.is_dir():
            logger.warning(f"Certificate store {self.path} does not exist")
            return

        for entry in sorted(self.path.iterdir()):
            if not entry.is_file():
                continue
            try:
                self._load_file(entry)
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable store entry {entry}: {e}")

        logger.debug(
            f"Loaded {len(self.certificates)} certificates and {len(self._keys)} keys from {self.path}"
        )

    def close(self):
        self.certificates = []
        self._keys = []

    def _load_file(self, entry: Path):
        suffix = entry.suffix.lower()
        data = entry.read_bytes()

        if suffix in PKCS12_SUFFIXES:
            key, cert, extra = pkcs12.load_key_and_certificates(data, None)
            if key is not None:
                self._keys.append(key)
            if cert is not None:
                self._add_certificate(cert)
            for extra_cert in extra or []:
                self._add_certificate(extra_cert)
        elif suffix in DER_SUFFIXES:
            self._add_certificate(x509.load_der_x509_certificate(data))
        elif suffix in PEM_SUFFIXES:
            for match in _PEM_BLOCK_RE.finditer(data):
                block, label = match.group(0), match.group(1)
                if label.endswith(b"CERTIFICATE"):
                    self._add_certificate(x509.load_pem_x509_certificate(block))
                elif label.endswith(b"PRIVATE KEY"):
                    self._keys.append(serialization.load_pem_private_key(block, password=None))

    def _add_certificate(self, certificate: x509.Certificate):
        if certificate not in self.certificates:
            self.certificates.append(certificate)

    def private_key_for(self, certificate: x509.Certificate):
        wanted = _public_key_der(certificate.public_key())
        for key in self._keys:
            if _public_key_der(key.public_key()) == wanted:
                return key
        return None

    def chain_for(self, certificate: x509.Certificate) -> List[x509.Certificate]:
        """Issuer certificates above the given one, nearest first"""
        chain = []
        current = certificate
        while not is_self_issued(current):
            issuer = next(
                (
                    c
                    for c in self.certificates
                    if c.subject == current.issuer and c not in chain and c != current
                ),
                None,
            )
            if issuer is None:
                break
            chain.append(issuer)
            current = issuer
        return chain

    def find_certificate(self, identity: str) -> Optional[x509.Certificate]:
        """
        Look up a certificate by e-mail address or thumbprint.

        Identities containing '@' are e-mail addresses, possibly in the
        "Name <address>" form git uses; the comparison is case insensitive.
        Anything else is compared to the SHA-1 thumbprint.
        """
        if "@" in identity:
            address = parseaddr(identity)[1].lower()

            def matches(cert):
                return any(a.lower() == address for a in email_addresses(cert))

        else:
            wanted = identity.strip().upper()

            def matches(cert):
                return thumbprint(cert) == wanted

        for certificate in self.certificates:
            if matches(certificate):
                return certificate
        return None

    def find_signer(self, identity: str) -> Signer:
        """
        Resolve an identity to a signer able to sign.

        Raises:
            SignerNotFoundError: no certificate matches
            SignerLacksPrivateKeyError: the match has no usable private key
        """
        certificate = self.find_certificate(identity)
        if certificate is None:
            raise SignerNotFoundError(identity)

        signer = Signer(
            certificate=certificate,
            private_key=self.private_key_for(certificate),
            chain=self.chain_for(certificate),
        )
        if not signer.has_private_key:
            raise SignerLacksPrivateKeyError(signer.thumbprint)

        logger.info(f"Using certificate {signer.thumbprint} for {identity}")
        return signer

    def list_keys(self, out: IO[str]):
        """Print the certificates of the store in --list-keys format"""
        for index, cert in enumerate(self.certificates):
            if index:
                print(file=out)
            print(f"ID: {thumbprint(cert)}", file=out)
            print(f"S/N: {cert.serial_number:X}", file=out)
            print(f"Signature Algorithm: {_algorithm_name(cert)}", file=out)
            print(
                f"Validity: {cert.not_valid_before_utc.isoformat()} - {cert.not_valid_after_utc.isoformat()}",
                file=out,
            )
            print(f"Issuer: {issuer_name(cert)}", file=out)
            print(f"Subject: {subject_name(cert)}", file=out)
            print(f"Emails: {', '.join(email_addresses(cert))}", file=out)


def _algorithm_name(certificate: x509.Certificate) -> str:
    oid = certificate.signature_algorithm_oid.dotted_string
    if oid not in SIGNATURE_ALGORITHMS:
        return oid
    pk_algorithm, hash_algorithm = SIGNATURE_ALGORITHMS[oid]
    return f"{hash_algorithm.name.lower()}{pk_algorithm.name}"
