"""
CMS SignedData signing and verification.

SignedData structures are assembled with asn1crypto, keys, certificates and
signature primitives come from cryptography. Signed attributes are signed
and verified over their SET OF encoding (RFC 5652 5.4).
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from asn1crypto import cms, core
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from .certstore import HASH_NAMES, IncludePolicy, Signer
from .errors import DecodeFailureError, SignatureInvalidError, UnsupportedAlgorithmError

logger = logging.getLogger(__name__)

HASH_ALGORITHMS = {
    "sha1": hashes.SHA1,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


def digest(hash_name: str, data: bytes) -> bytes:
    if hash_name not in HASH_ALGORITHMS:
        raise UnsupportedAlgorithmError(f"Unsupported digest algorithm: {hash_name}")
    return hashlib.new(hash_name, data).digest()


def signed_attrs_to_sign(signed_attrs: cms.CMSAttributes) -> bytes:
    """DER of the signed attributes as signed, a SET OF instead of [0] IMPLICIT"""
    signed_attrs_der = signed_attrs.dump()
    if signed_attrs_der[0:1] == b"\xa0":
        return b"\x31" + signed_attrs_der[1:]
    return signed_attrs_der


def sign_bytes(private_key, data: bytes, hash_name: str) -> bytes:
    hash_algorithm = HASH_ALGORITHMS[hash_name]()
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.sign(data, padding.PKCS1v15(), hash_algorithm)
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return private_key.sign(data, ec.ECDSA(hash_algorithm))
    raise UnsupportedAlgorithmError(f"Unsupported signing key type: {type(private_key).__name__}")


def verify_bytes(public_key, signature: bytes, data: bytes, hash_name: str, signature_algo: str):
    """
    Check a raw signature.

    Raises:
        InvalidSignature: the signature does not match
        UnsupportedAlgorithmError: unknown digest or signature algorithm
    """
    if hash_name not in HASH_ALGORITHMS:
        raise UnsupportedAlgorithmError(f"Unsupported digest algorithm: {hash_name}")
    hash_algorithm = HASH_ALGORITHMS[hash_name]()
    if signature_algo == "rsassa_pkcs1v15" and isinstance(public_key, rsa.RSAPublicKey):
        public_key.verify(signature, data, padding.PKCS1v15(), hash_algorithm)
    elif signature_algo == "ecdsa" and isinstance(public_key, ec.EllipticCurvePublicKey):
        public_key.verify(signature, data, ec.ECDSA(hash_algorithm))
    else:
        raise UnsupportedAlgorithmError(f"Unsupported signature algorithm: {signature_algo}")


def to_asn1(certificate: x509.Certificate) -> asn1_x509.Certificate:
    return asn1_x509.Certificate.load(certificate.public_bytes(serialization.Encoding.DER))


def from_asn1(certificate: asn1_x509.Certificate) -> x509.Certificate:
    return x509.load_der_x509_certificate(certificate.dump())


def attribute_values(attributes, type_name: str) -> list:
    """Values of every attribute of a type, for signed or unsigned attributes"""
    if isinstance(attributes, core.Void):
        return []
    values = []
    for attr in attributes:
        if attr["type"].native == type_name or attr["type"].dotted == type_name:
            values.extend(attr["values"])
    return values


def embedded_certificates(signed_data: cms.SignedData) -> List[asn1_x509.Certificate]:
    certificates = signed_data["certificates"]
    if isinstance(certificates, core.Void):
        return []
    return [choice.chosen for choice in certificates if choice.name == "certificate"]


def find_signer_certificate(
    signer_info: cms.SignerInfo, certificates: List[asn1_x509.Certificate]
) -> Optional[asn1_x509.Certificate]:
    """Match a SignerInfo's sid against a list of certificates"""
    sid = signer_info["sid"]
    if sid.name == "issuer_and_serial_number":
        issuer = sid.chosen["issuer"]
        serial_number = sid.chosen["serial_number"].native
        for certificate in certificates:
            if certificate.issuer == issuer and certificate.serial_number == serial_number:
                return certificate
    elif sid.name == "subject_key_identifier":
        key_identifier = sid.chosen.native
        for certificate in certificates:
            if certificate.key_identifier == key_identifier:
                return certificate
    return None


@dataclass
class SignedEnvelope:
    """An encoded CMS SignedData and, for detached signatures, its content"""

    content_info: cms.ContentInfo
    detached_content: Optional[bytes] = None

    @property
    def signed_data(self) -> cms.SignedData:
        return self.content_info["content"]

    @property
    def signer_infos(self) -> List[cms.SignerInfo]:
        return list(self.signed_data["signer_infos"])

    @property
    def is_detached(self) -> bool:
        return isinstance(self.signed_data["encap_content_info"]["content"], core.Void)

    @property
    def embedded_content(self) -> Optional[bytes]:
        if self.is_detached:
            return None
        return bytes(self.signed_data["encap_content_info"]["content"])

    @property
    def content(self) -> Optional[bytes]:
        """Supplied content when there is some, the embedded content otherwise"""
        if self.detached_content is not None:
            return self.detached_content
        return self.embedded_content

    @property
    def certificates(self) -> List[x509.Certificate]:
        return [from_asn1(c) for c in embedded_certificates(self.signed_data)]

    def signer_certificate(self, signer_info: cms.SignerInfo) -> Optional[x509.Certificate]:
        certificate = find_signer_certificate(signer_info, embedded_certificates(self.signed_data))
        if certificate is None:
            return None
        return from_asn1(certificate)

    def signing_times(self) -> List[datetime]:
        times = []
        for signer_info in self.signer_infos:
            for value in attribute_values(signer_info["signed_attrs"], "signing_time"):
                times.append(value.native)
        return times

    def encode(self) -> bytes:
        return self.content_info.dump()

    def verify(self):
        """
        Check every signer's signature against the content.

        Raises:
            SignatureInvalidError: a signature, digest or certificate check failed
        """
        content = self.content
        if content is None:
            raise SignatureInvalidError("The signature is detached and no content was supplied")

        embedded = self.embedded_content
        if self.detached_content is not None and embedded is not None and embedded != self.detached_content:
            raise SignatureInvalidError("The signature carries content other than the supplied content")

        signer_infos = self.signer_infos
        if not signer_infos:
            raise SignatureInvalidError("Must have valid signing information. There is none in the signature.")

        certificates = self.certificates
        for signer_info in signer_infos:
            certificate = self.signer_certificate(signer_info)
            if certificate is None:
                raise SignatureInvalidError("The signer certificate is not included in the signature")

            hash_name = signer_info["digest_algorithm"]["algorithm"].native
            content_digest = digest(hash_name, content)

            signed_attrs = signer_info["signed_attrs"]
            if isinstance(signed_attrs, core.Void):
                to_verify = content
            else:
                message_digests = attribute_values(signed_attrs, "message_digest")
                if len(message_digests) != 1 or message_digests[0].native != content_digest:
                    raise SignatureInvalidError("The message digest does not match the content")
                to_verify = signed_attrs_to_sign(signed_attrs)

            try:
                verify_bytes(
                    certificate.public_key(),
                    signer_info["signature"].native,
                    to_verify,
                    hash_name,
                    signer_info["signature_algorithm"].signature_algo,
                )
            except InvalidSignature:
                raise SignatureInvalidError("The signature does not match the content") from None

            _check_issued_by(certificate, certificates)
            logger.debug(f"Signature by {certificate.subject.rfc4514_string()} verified")


def _check_issued_by(certificate: x509.Certificate, certificates: List[x509.Certificate]):
    if certificate.issuer == certificate.subject:
        return
    for issuer in certificates:
        if issuer.subject == certificate.issuer and issuer != certificate:
            try:
                certificate.verify_directly_issued_by(issuer)
            except (ValueError, TypeError, InvalidSignature) as e:
                raise SignatureInvalidError(
                    f"The signer certificate is not validly issued by '{issuer.subject.rfc4514_string()}'"
                ) from e
            return


def sign(
    content: bytes,
    signer: Signer,
    include_policy: IncludePolicy,
    detached: bool = False,
    signing_time: Optional[datetime] = None,
) -> SignedEnvelope:
    """
    Create a SignedData over content.

    Args:
        content: Bytes to sign
        signer: Signer with a private key
        include_policy: Which certificates of the signer's chain to embed
        detached: Leave the content out of the structure
        signing_time: Adds a signing-time signed attribute when given

    Returns:
        SignedEnvelope for the new structure
    """
    _, hash_algorithm = signer.algorithm_codes
    hash_name = HASH_NAMES[hash_algorithm]
    key_algorithm = "rsa" if isinstance(signer.private_key, rsa.RSAPrivateKey) else "ecdsa"

    attributes = [
        cms.CMSAttribute({"type": "content_type", "values": ["data"]}),
        cms.CMSAttribute({"type": "message_digest", "values": [digest(hash_name, content)]}),
    ]
    if signing_time is not None:
        attributes.append(
            cms.CMSAttribute(
                {"type": "signing_time", "values": [cms.Time({"utc_time": signing_time})]}
            )
        )
    signed_attrs = cms.CMSAttributes(attributes)

    signature = sign_bytes(signer.private_key, signed_attrs_to_sign(signed_attrs), hash_name)

    signer_cert = to_asn1(signer.certificate)
    signer_info = cms.SignerInfo({
        "version": "v1",
        "sid": cms.SignerIdentifier({
            "issuer_and_serial_number": cms.IssuerAndSerialNumber({
                "issuer": signer_cert.issuer,
                "serial_number": signer_cert.serial_number,
            })
        }),
        "digest_algorithm": {"algorithm": hash_name},
        "signature_algorithm": {"algorithm": f"{hash_name}_{key_algorithm}"},
        "signed_attrs": signed_attrs,
        "signature": signature,
    })

    encap = {"content_type": "data"}
    if not detached:
        encap["content"] = content

    signed_data = {
        "version": "v1",
        "digest_algorithms": [{"algorithm": hash_name}],
        "encap_content_info": encap,
        "signer_infos": [signer_info],
    }
    certificates = include_policy.select(signer.full_chain)
    if certificates:
        signed_data["certificates"] = [to_asn1(c) for c in certificates]

    content_info = cms.ContentInfo({
        "content_type": "signed_data",
        "content": cms.SignedData(signed_data),
    })
    logger.debug(f"Signed {len(content)} bytes with {hash_name}_{key_algorithm}, {len(certificates)} certificates")
    return SignedEnvelope(content_info, content if detached else None)


def decode(data: bytes, detached_content: Optional[bytes] = None) -> SignedEnvelope:
    """
    Parse an encoded SignedData.

    Raises:
        DecodeFailureError: the data is not a well formed SignedData
    """
    try:
        content_info = cms.ContentInfo.load(data, strict=True)
        if content_info["content_type"].native != "signed_data":
            raise DecodeFailureError(
                f"Expected signed data, got {content_info['content_type'].native}"
            )
        signed_data = content_info["content"]
        # asn1crypto parses lazily, force everything verification reads
        signed_data["encap_content_info"].native
        signed_data["certificates"].native
        for signer_info in signed_data["signer_infos"]:
            for name in ("sid", "digest_algorithm", "signed_attrs", "signature_algorithm", "signature"):
                signer_info[name].native
        envelope = SignedEnvelope(content_info, detached_content)
        envelope.certificates
    except (ValueError, TypeError, KeyError) as e:
        raise DecodeFailureError(f"The signature could not be decoded: {e}") from e
    return envelope
