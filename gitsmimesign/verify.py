"""
Signature verification with GnuPG status output.

git reads NEWSIG, then GOODSIG/BADSIG/ERRSIG and a TRUST_ line from the
status channel. The exit status has to agree with those lines, so every
failure is reported on the status channel first and then re-raised.
"""

import logging
from typing import BinaryIO, List, Optional, Sequence

from cryptography import x509

from . import cms_engine, pem
from .certstore import issuer_name, subject_name, thumbprint
from .cms_engine import SignedEnvelope
from .errors import TimestampInvalidError
from .fileio import read_input
from .status import StatusEmitter, StatusEvent, iso8601_utc
from .timestamp import check_timestamp, timestamp_times

logger = logging.getLogger(__name__)


def verify(file_arguments: Sequence[str], emitter: StatusEmitter, stdin: Optional[BinaryIO] = None) -> int:
    """
    Verify the signature named on the command line.

    One or no file is an attached signature, two files are a detached
    signature followed by the signed content. '-' and no file read stdin.

    Returns:
        0 on a good signature; failures raise
    """
    emitter.emit(StatusEvent.new_sig())

    if len(file_arguments) < 2:
        data = read_input(file_arguments[0] if file_arguments else None, stdin)
        return _verify(data, None, emitter)

    signature = read_input(file_arguments[0], stdin)
    content = read_input(file_arguments[1], stdin)
    return _verify(signature, content, emitter)


def verify_attached(data: bytes, emitter: StatusEmitter) -> int:
    emitter.emit(StatusEvent.new_sig())
    return _verify(data, None, emitter)


def verify_detached(signature: bytes, content: bytes, emitter: StatusEmitter) -> int:
    emitter.emit(StatusEvent.new_sig())
    return _verify(signature, content, emitter)


def _verify(signature: bytes, content: Optional[bytes], emitter: StatusEmitter) -> int:
    envelope = None
    try:
        _, body = pem.try_decode(signature)
        envelope = cms_engine.decode(body, detached_content=content)
        envelope.verify()
        _check_timestamps(envelope)
    except Exception:
        certificates = _recoverable_certificates(envelope)
        if not certificates:
            emitter.emit(StatusEvent.err_sig())
        else:
            for certificate in certificates:
                emitter.emit(StatusEvent.bad_sig(thumbprint(certificate), subject_name(certificate)))
            _write_signing_information(envelope, certificates, False, emitter)
        emitter.flush()
        raise

    certificates = envelope.certificates
    for certificate in certificates:
        emitter.emit(StatusEvent.good_sig(thumbprint(certificate), subject_name(certificate)))
    _write_signing_information(envelope, certificates, True, emitter)
    emitter.emit(StatusEvent.trust_fully())
    emitter.flush()
    return 0


def _check_timestamps(envelope: SignedEnvelope):
    # every signer is held to the validity window of its own certificate
    for signer_info in envelope.signer_infos:
        certificate = envelope.signer_certificate(signer_info)
        result = check_timestamp(
            signer_info,
            certificate.not_valid_before_utc,
            certificate.not_valid_after_utc,
        )
        if result is False:
            raise TimestampInvalidError("The RFC3161 timestamp is invalid.")


def _recoverable_certificates(envelope: Optional[SignedEnvelope]) -> List[x509.Certificate]:
    if envelope is None:
        return []
    try:
        return envelope.certificates
    except ValueError:
        return []


def _write_signing_information(
    envelope: SignedEnvelope,
    certificates: List[x509.Certificate],
    good_signature: bool,
    emitter: StatusEmitter,
):
    signer_infos = envelope.signer_infos
    issued = envelope.signer_certificate(signer_infos[0]) if signer_infos else None
    if issued is None:
        issued = certificates[0]

    emitter.info(f"Signature made using certificate ID 0x{thumbprint(issued)}")
    for signing_time in envelope.signing_times():
        emitter.info(f"Signature made at {iso8601_utc(signing_time)}")
    for signer_info in signer_infos:
        for timestamp in timestamp_times(signer_info):
            emitter.info(f"Signature timestamped by signing authority {iso8601_utc(timestamp)}")
    emitter.info(f"Signature issued by '{issuer_name(issued)}'")

    if good_signature:
        emitter.info(f"Good signature from '{subject_name(issued)}'")
    else:
        emitter.info(f"Bad signature from '{subject_name(issued)}'")
