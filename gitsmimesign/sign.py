"""
Signing with GnuPG status output.

git looks for "\\n[GNUPG:] SIG_CREATED " in the status output, so a line has
to come before SIG_CREATED. BEGIN_SIGNING is emitted for that, as gpg does.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from . import cms_engine, pem
from .certstore import EXCLUDE_ROOT, CertificateStore, IncludePolicy, Signer
from .status import SignatureForm, StatusEmitter, StatusEvent
from .timestamp import request_timestamp

logger = logging.getLogger(__name__)


def sign(
    identity: str,
    content: bytes,
    emitter: StatusEmitter,
    store: CertificateStore,
    timestamp_authority: Optional[str] = None,
    detached: bool = False,
    armor: bool = False,
    include_policy: IncludePolicy = EXCLUDE_ROOT,
    session=None,
) -> bytes:
    """
    Sign content with the certificate matching identity.

    Args:
        identity: E-mail address or certificate thumbprint
        content: Bytes to sign
        emitter: Status and info channels
        store: Opened certificate store
        timestamp_authority: RFC 3161 authority URL, None for no timestamp
        detached: Create a detached signature
        armor: PEM armor the output
        include_policy: Certificates to embed in the signature
        session: Optional requests.Session for the timestamp request

    Returns:
        The encoded signature, ready to be written to stdout
    """
    signer = store.find_signer(identity)
    return sign_with_signer(
        signer,
        content,
        emitter,
        timestamp_authority=timestamp_authority,
        detached=detached,
        armor=armor,
        include_policy=include_policy,
        session=session,
    )


def sign_with_signer(
    signer: Signer,
    content: bytes,
    emitter: StatusEmitter,
    timestamp_authority: Optional[str] = None,
    detached: bool = False,
    armor: bool = False,
    include_policy: IncludePolicy = EXCLUDE_ROOT,
    session=None,
) -> bytes:
    """Sign with an already resolved signer, see sign()"""
    pk_algorithm, hash_algorithm = signer.algorithm_codes

    emitter.emit(StatusEvent.begin_signing())

    now = datetime.now(timezone.utc).replace(microsecond=0)
    # a timestamp token replaces the signing-time attribute
    envelope = cms_engine.sign(
        content,
        signer,
        include_policy,
        detached=detached,
        signing_time=None if timestamp_authority else now,
    )

    if timestamp_authority:
        request_timestamp(envelope, timestamp_authority, session=session)

    emitter.emit(
        StatusEvent.sig_created(
            SignatureForm.DETACHED if detached else SignatureForm.STANDARD,
            pk_algorithm,
            hash_algorithm,
            now,
            signer.thumbprint,
        )
    )

    encoded = envelope.encode()
    if armor:
        encoded = pem.encode(pem.SIGNED_MESSAGE, encoded).encode("ascii")

    logger.info(f"Created {'detached ' if detached else ''}signature with {signer.thumbprint}")
    emitter.info("Finished signing")
    emitter.flush()
    return encoded
