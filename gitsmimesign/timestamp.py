"""
RFC 3161 timestamping of signatures.

A signature is timestamped by sending the SHA-384 hash of its signature
value to a timestamp authority (TSA). The returned token is stored as the
signature-time-stamp-token unsigned attribute of the SignerInfo
(RFC 3161 appendix A) and checked again when the signature is verified.
"""

import logging
import os
from datetime import datetime
from typing import List, Optional

import requests
from asn1crypto import cms, core, tsp
from cryptography.exceptions import InvalidSignature

from .cms_engine import (
    SignedEnvelope,
    attribute_values,
    digest,
    embedded_certificates,
    find_signer_certificate,
    from_asn1,
    signed_attrs_to_sign,
    verify_bytes,
)
from .errors import (
    MultipleSignersUnsupportedError,
    TimestampAuthorityError,
    TimestampInvalidError,
    UnsupportedAlgorithmError,
)

logger = logging.getLogger(__name__)

TIMESTAMP_TOKEN_OID = "1.2.840.113549.1.9.16.2.14"
TIMESTAMP_QUERY = "application/timestamp-query"
TIMESTAMP_REPLY = "application/timestamp-reply"
IMPRINT_HASH = "sha384"
NONCE_BYTES = 8


def build_request(signature_value: bytes, nonce: int) -> tsp.TimeStampReq:
    return tsp.TimeStampReq({
        "version": "v1",
        "message_imprint": {
            "hash_algorithm": {"algorithm": IMPRINT_HASH},
            "hashed_message": digest(IMPRINT_HASH, signature_value),
        },
        "nonce": nonce,
        "cert_req": True,  # Request certificate in response
    })


def request_timestamp(envelope: SignedEnvelope, authority_uri: str, session=None) -> cms.ContentInfo:
    """
    Timestamp the signature of the envelope's only signer.

    Args:
        envelope: Freshly signed envelope with exactly one SignerInfo
        authority_uri: http(s) URL of the timestamp authority
        session: Optional requests.Session, the requests module is used otherwise

    Returns:
        The timestamp token, already embedded in the SignerInfo

    Raises:
        MultipleSignersUnsupportedError: the envelope does not have exactly one signer
        TimestampAuthorityError: the authority failed or answered in the wrong format
        TimestampInvalidError: the token does not match the request
    """
    signer_infos = envelope.signer_infos
    if len(signer_infos) != 1:
        raise MultipleSignersUnsupportedError(
            f"Timestamping needs exactly one signer, found {len(signer_infos)}"
        )
    signer_info = signer_infos[0]
    signature_value = signer_info["signature"].native

    nonce = int.from_bytes(os.urandom(NONCE_BYTES), "big")
    request = build_request(signature_value, nonce)

    http = session or requests
    logger.info(f"Requesting timestamp from {authority_uri}")
    try:
        response = http.post(
            authority_uri,
            data=request.dump(),
            headers={"Content-Type": TIMESTAMP_QUERY},
        )
    except requests.RequestException as e:
        raise TimestampAuthorityError(f"Could not reach the timestamp authority {authority_uri}: {e}") from e

    if not 200 <= response.status_code < 300:
        raise TimestampAuthorityError(
            f"There was an error from the timestamp authority. It responded with "
            f"{response.status_code} {response.reason}",
            response.status_code,
        )

    media_type = response.headers.get("Content-Type", "").split(";")[0].strip()
    if media_type != TIMESTAMP_REPLY:
        raise TimestampAuthorityError(
            f"The reply from the timestamp server was in an invalid format: {media_type or 'none'}",
            response.status_code,
        )

    token = process_response(response.content, request, signature_value)
    embed_timestamp(signer_info, token)
    return token


def process_response(data: bytes, request: tsp.TimeStampReq, signature_value: bytes) -> cms.ContentInfo:
    """Check a TimeStampResp against its request and return the token"""
    try:
        response = tsp.TimeStampResp.load(data, strict=True)
        status = response["status"]["status"].native
    except ValueError as e:
        raise TimestampInvalidError(f"The timestamp reply could not be decoded: {e}") from e

    if status not in ("granted", "granted_with_mods"):
        failure = response["status"]["fail_info"].native
        raise TimestampAuthorityError(f"The timestamp authority refused the request: {status} {failure}")

    token = response["time_stamp_token"]
    try:
        tst_info = token_info(token)
        nonce = tst_info["nonce"].native
        imprint = tst_info["message_imprint"]
        tsa_cert = token_signer_certificate(token)
    except ValueError as e:
        raise TimestampInvalidError(f"The timestamp token could not be decoded: {e}") from e

    if nonce != request["nonce"].native:
        raise TimestampInvalidError("The timestamp token nonce does not match the request")
    if imprint.native != request["message_imprint"].native:
        raise TimestampInvalidError("The timestamp token message imprint does not match the request")
    if not token_is_bound(token, signature_value, tsa_cert):
        raise TimestampInvalidError("The timestamp token signature is invalid")

    logger.debug(f"Timestamp granted at {tst_info['gen_time'].native}")
    return token


def embed_timestamp(signer_info: cms.SignerInfo, token: cms.ContentInfo):
    """Add a token to the signer's unsigned attributes"""
    attributes = []
    unsigned_attrs = signer_info["unsigned_attrs"]
    if not isinstance(unsigned_attrs, core.Void):
        attributes.extend(unsigned_attrs)
    attributes.append(cms.CMSAttribute({"type": TIMESTAMP_TOKEN_OID, "values": [token]}))
    signer_info["unsigned_attrs"] = cms.CMSAttributes(attributes)


def token_info(token: cms.ContentInfo) -> tsp.TSTInfo:
    if token["content_type"].native != "signed_data":
        raise ValueError(f"Timestamp token is {token['content_type'].native}, not signed data")
    encap = token["content"]["encap_content_info"]
    if encap["content_type"].native != "tst_info":
        raise ValueError(f"Timestamp token carries {encap['content_type'].native}, not TSTInfo")
    return tsp.TSTInfo.load(bytes(encap["content"]))


def token_signer_certificate(token: cms.ContentInfo):
    signed_data = token["content"]
    signer_infos = list(signed_data["signer_infos"])
    if len(signer_infos) != 1:
        return None
    return find_signer_certificate(signer_infos[0], embedded_certificates(signed_data))


def token_is_bound(token: cms.ContentInfo, signature_value: bytes, tsa_cert) -> bool:
    """
    Verify the TSA signature of a token and that it covers signature_value.

    A token can only be verified with its embedded TSA certificate.
    """
    if tsa_cert is None:
        return False

    signed_data = token["content"]
    tsa_info = list(signed_data["signer_infos"])[0]
    signed_attrs = tsa_info["signed_attrs"]
    if isinstance(signed_attrs, core.Void):
        return False

    hash_name = tsa_info["digest_algorithm"]["algorithm"].native
    tst_info_der = bytes(signed_data["encap_content_info"]["content"])
    message_digests = attribute_values(signed_attrs, "message_digest")
    if len(message_digests) != 1 or message_digests[0].native != digest(hash_name, tst_info_der):
        return False

    try:
        verify_bytes(
            from_asn1(tsa_cert).public_key(),
            tsa_info["signature"].native,
            signed_attrs_to_sign(signed_attrs),
            hash_name,
            tsa_info["signature_algorithm"].signature_algo,
        )
    except InvalidSignature:
        return False

    imprint = tsp.TSTInfo.load(tst_info_der)["message_imprint"]
    imprint_hash = imprint["hash_algorithm"]["algorithm"].native
    return imprint["hashed_message"].native == digest(imprint_hash, signature_value)


def check_timestamp(
    signer_info: cms.SignerInfo,
    not_before: Optional[datetime] = None,
    not_after: Optional[datetime] = None,
) -> Optional[bool]:
    """
    Check the timestamp tokens of a signer against a validity window.

    Args:
        signer_info: SignerInfo whose unsigned attributes are inspected
        not_before: Earliest accepted timestamp, inclusive
        not_after: Latest accepted timestamp, inclusive

    Returns:
        None when there is no timestamp. False when any token fails to
        decode, lacks its TSA certificate, is not bound to the signature or
        falls outside the window. True otherwise
    """
    unsigned_attrs = signer_info["unsigned_attrs"]
    if isinstance(unsigned_attrs, core.Void):
        return None

    found = False
    signature_value = None
    for attr in unsigned_attrs:
        if attr["type"].dotted != TIMESTAMP_TOKEN_OID:
            continue

        try:
            raw_values = [value.dump() for value in attr["values"]]
        except ValueError as e:
            logger.warning(f"Timestamp attribute could not be decoded: {e}")
            return False

        for raw in raw_values:
            if signature_value is None:
                signature_value = signer_info["signature"].native

            try:
                # strict: the token must consume the whole attribute value
                token = cms.ContentInfo.load(raw, strict=True)
                timestamp = token_info(token)["gen_time"].native
                tsa_cert = token_signer_certificate(token)
            except (ValueError, TypeError, KeyError) as e:
                logger.warning(f"Timestamp token could not be decoded: {e}")
                return False

            # No certificate resolver is available, the TSA certificate must be embedded
            if tsa_cert is None:
                logger.warning("Timestamp token does not carry its TSA certificate")
                return False

            try:
                bound = token_is_bound(token, signature_value, tsa_cert)
            except (ValueError, TypeError, KeyError, UnsupportedAlgorithmError) as e:
                logger.warning(f"Timestamp token could not be verified: {e}")
                return False

            if not bound:
                logger.warning("Timestamp token was not issued for this signature")
                return False

            lower = not_before if not_before is not None else timestamp
            upper = not_after if not_after is not None else timestamp
            if timestamp < lower or timestamp > upper:
                logger.warning(f"Timestamp {timestamp} is outside {lower} - {upper}")
                return False

            found = True

    if found:
        return True
    return None


def timestamp_times(signer_info: cms.SignerInfo) -> List[datetime]:
    """Times of the decodable timestamp tokens of a signer"""
    times = []
    for value in attribute_values(signer_info["unsigned_attrs"], TIMESTAMP_TOKEN_OID):
        try:
            times.append(token_info(cms.ContentInfo.load(value.dump()))["gen_time"].native)
        except (ValueError, KeyError):
            continue
    return times
