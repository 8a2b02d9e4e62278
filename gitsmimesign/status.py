"""
GnuPG status protocol emulation.

git drives the signing program through GnuPG's machine readable status
lines ("[GNUPG:] KEYWORD args") written to the descriptor given with
--status-fd. Only the keywords git looks at are modelled. A second, human
readable info channel carries the messages shown to the user.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import IO, Optional, Tuple

logger = logging.getLogger(__name__)

STATUS_PREFIX = "[GNUPG:] "
INFO_PREFIX = "[GitSMimeSign:] "


class StatusKeyword(Enum):
    # NEWSIG [<signers_uid>]: issued right before a signature verification starts.
    NEWSIG = "NEWSIG"
    # BEGIN_SIGNING: start of the actual signing process.
    BEGIN_SIGNING = "BEGIN_SIGNING"
    # SIG_CREATED <type> <pk_algo> <hash_algo> <class> <timestamp> <keyfpr>
    SIG_CREATED = "SIG_CREATED"
    # GOODSIG <long_keyid_or_fpr> <username>
    GOODSIG = "GOODSIG"
    # BADSIG <long_keyid_or_fpr> <username>
    BADSIG = "BADSIG"
    # ERRSIG: it was not possible to check the signature.
    ERRSIG = "ERRSIG"
    # TRUST_FULLY [0 [<validation_model>]]
    TRUST_FULLY = "TRUST_FULLY"


class SignatureForm(Enum):
    DETACHED = "D"
    STANDARD = "S"


@dataclass(frozen=True)
class StatusEvent:
    """
    One status line.

    Build events with the classmethods below; they fix the field list of
    each keyword so a line can not be emitted with fields out of order.
    """

    keyword: StatusKeyword
    fields: Tuple[str, ...] = ()

    def format(self) -> str:
        return " ".join((self.keyword.value,) + self.fields)

    @classmethod
    def new_sig(cls) -> "StatusEvent":
        return cls(StatusKeyword.NEWSIG)

    @classmethod
    def begin_signing(cls) -> "StatusEvent":
        return cls(StatusKeyword.BEGIN_SIGNING)

    @classmethod
    def sig_created(
        cls,
        form: SignatureForm,
        pk_algorithm: int,
        hash_algorithm: int,
        created: datetime,
        fingerprint: str,
    ) -> "StatusEvent":
        # gpgsm always reports signature class 00 for CMS signatures
        return cls(
            StatusKeyword.SIG_CREATED,
            (
                form.value,
                str(int(pk_algorithm)),
                str(int(hash_algorithm)),
                "00",
                iso8601_utc(created),
                fingerprint,
            ),
        )

    @classmethod
    def good_sig(cls, fingerprint: str, subject: str) -> "StatusEvent":
        return cls(StatusKeyword.GOODSIG, (fingerprint, subject))

    @classmethod
    def bad_sig(cls, fingerprint: str, subject: str) -> "StatusEvent":
        return cls(StatusKeyword.BADSIG, (fingerprint, subject))

    @classmethod
    def err_sig(cls) -> "StatusEvent":
        return cls(StatusKeyword.ERRSIG)

    @classmethod
    def trust_fully(cls) -> "StatusEvent":
        # "shell" is the standard X.509 validation model
        return cls(StatusKeyword.TRUST_FULLY, ("0", "shell"))


def iso8601_utc(value: datetime) -> str:
    """ISO 8601 in UTC with a Z suffix; git detects the format by the 'T'"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def open_descriptor(descriptor: Optional[str]) -> Tuple[Optional[IO[str]], bool]:
    """
    Resolve a --status-fd value to a text stream.

    Returns:
        (stream, owned) where owned is True when the stream was opened here
        and must be closed by the caller. The stream is None for an empty
        descriptor.
    """
    if descriptor is None or not descriptor.strip():
        return None, False
    if descriptor == "1":
        return sys.stdout, False
    if descriptor == "2":
        return sys.stderr, False
    logger.debug(f"Writing status lines to {descriptor}")
    return open(descriptor, "w", encoding="utf-8", newline="\n"), True


class StatusEmitter:
    """
    Writes status and info lines.

    Both channels are optional; writing to a missing channel does nothing.
    Write errors are not caught since git relies on the status lines.
    """

    def __init__(
        self,
        status: Optional[IO[str]] = None,
        info: Optional[IO[str]] = None,
        owns_status: bool = False,
    ):
        self.status = status
        self.info_stream = info
        self._owns_status = owns_status

    @classmethod
    def from_descriptor(
        cls, descriptor: Optional[str], info: Optional[IO[str]] = None
    ) -> "StatusEmitter":
        status, owned = open_descriptor(descriptor)
        return cls(status, info if info is not None else sys.stderr, owned)

    def emit(self, event: StatusEvent):
        if self.status is None:
            return
        self.status.write(STATUS_PREFIX + event.format() + "\n")

    def info(self, message: str):
        if self.info_stream is None:
            return
        # unix line endings regardless of platform, git expects them
        self.info_stream.write(INFO_PREFIX + message + "\n")

    def flush(self):
        for stream in (self.status, self.info_stream):
            if stream is not None:
                stream.flush()

    def close(self):
        self.flush()
        if self._owns_status and self.status is not None:
            self.status.close()
            self.status = None

    def __enter__(self) -> "StatusEmitter":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
