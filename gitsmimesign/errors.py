"""
Errors raised while signing or verifying.

Every handled failure derives from SignClientError so the command line can
report it on the info channel and exit with status 1.
"""

from typing import Optional


class SignClientError(Exception):
    """Base class for failures of a sign, verify or list operation"""


class SignerNotFoundError(SignClientError):
    def __init__(self, identity: str):
        super().__init__(f"Failed to get identity certificate with identity: {identity}")
        self.identity = identity


class SignerLacksPrivateKeyError(SignClientError):
    def __init__(self, thumbprint: str):
        super().__init__(f"The certificate {thumbprint} has an invalid signing key.")
        self.thumbprint = thumbprint


class UnsupportedAlgorithmError(SignClientError):
    """Signature or digest algorithm without a GnuPG code or a verifier"""


class InvalidArmorError(SignClientError):
    """PEM header/footer mismatch or a body that is not base64"""


class DecodeFailureError(SignClientError):
    """The input is not a well formed CMS SignedData structure"""


class SignatureInvalidError(SignClientError):
    """A signer's signature does not match the signed content"""


class TimestampInvalidError(SignClientError):
    """An RFC3161 token failed its binding or policy checks"""


class TimestampAuthorityError(SignClientError):
    """The timestamp authority answered with an error or an unexpected reply"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MultipleSignersUnsupportedError(SignClientError):
    """Timestamping needs exactly one signer"""


class ConfigurationError(SignClientError):
    """Invalid value in the configuration file or on the command line"""


class InputUnavailableError(SignClientError):
    """An input file is missing or stdin was not redirected"""
