"""
PEM armor for signatures.

Signatures are written under the SIGNED MESSAGE label. Decoding falls back to
the raw input when it is not a PEM block, so callers can pass armored and
binary CMS data through the same path.
"""

import base64
import binascii
import logging
import re
from typing import Tuple

from .errors import InvalidArmorError

logger = logging.getLogger(__name__)

SIGNED_MESSAGE = "SIGNED MESSAGE"

LINE_LENGTH = 64

_BLOCK_RE = re.compile(
    r"^(?P<header>-+\s?BEGIN[^-]+-+)\s*(?P<body>[^-]+)\s*(?P<footer>-+\s?END[^-]+-+)\s*$"
)
_WHITESPACE_RE = re.compile(r"\s+")


def encode(label: str, data: bytes) -> str:
    """Wrap data in a BEGIN/END block with 64 character base64 lines"""
    body = base64.b64encode(data).decode("ascii")
    lines = [f"-----BEGIN {label}-----"]
    lines.extend(body[i:i + LINE_LENGTH] for i in range(0, len(body), LINE_LENGTH))
    lines.append(f"-----END {label}-----")
    return "\n".join(lines) + "\n"


def try_decode(data: bytes) -> Tuple[bool, bytes]:
    """
    Decode a PEM block.

    Args:
        data: Armored or raw bytes

    Returns:
        (True, body) for a PEM block, (False, data) when the input is not one

    Raises:
        InvalidArmorError: the labels differ or the body is not base64
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return False, data

    match = _BLOCK_RE.match(text)
    if match is None:
        logger.debug("Input is not PEM armored, using it as raw bytes")
        return False, data

    header_label = _label(match.group("header"), "BEGIN")
    footer_label = _label(match.group("footer"), "END")
    if header_label.lower() != footer_label.lower():
        raise InvalidArmorError(
            f"Signed certificate header/footer format mismatch: {header_label}/{footer_label}"
        )

    body_text = _WHITESPACE_RE.sub("", match.group("body"))
    try:
        body = base64.b64decode(body_text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidArmorError(f"PEM body is not valid base64: {e}") from e

    return True, body


def _label(line: str, keyword: str) -> str:
    match = re.search(rf"{keyword}\s+(?P<label>[^-]+)", line, re.IGNORECASE)
    if match is None:
        raise InvalidArmorError(f"Unrecognized {keyword}: {line}")
    return match.group("label").strip()
