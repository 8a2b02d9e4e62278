"""
User configuration file.

Settings git does not pass on the command line live in
~/.gitsmimesignconfig:

    [Certificate]
    TimeAuthorityUrl = http://timestamp.digicert.com
    StorePath = ~/.gitsmimesign/certs

    [Logging]
    Debug = false
"""

import configparser
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

FILE_NAME = ".gitsmimesignconfig"
DEFAULT_TIMESTAMP_AUTHORITY = "http://timestamp.digicert.com"


@dataclass(frozen=True)
class SignConfig:
    time_authority_url: Optional[str] = None
    store_path: Optional[Path] = None
    debug: bool = False


def config_path() -> Path:
    return Path.home() / FILE_NAME


def validate_authority_url(value: str) -> str:
    """
    Require an absolute http or https URL.

    Raises:
        ConfigurationError: the URL is relative or uses another scheme
    """
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"The timestamp authority is not a valid http(s) URL: {value}")
    return value


def load_config(path: Optional[Path] = None) -> Optional[SignConfig]:
    """
    Load the configuration file if it exists.

    Unreadable files and malformed values are logged and ignored.
    TimeAuthorityUrl is checked when it is used, see
    resolve_timestamp_authority().

    Returns:
        SignConfig, or None when there is no usable configuration
    """
    path = path or config_path()
    if not path.is_file():
        return None

    parser = configparser.ConfigParser()
    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, OSError, UnicodeDecodeError) as e:
        logger.warning(f"Ignoring configuration file {path}: {e}")
        return None

    authority = parser.get("Certificate", "TimeAuthorityUrl", fallback="").strip()
    store_path = parser.get("Certificate", "StorePath", fallback="").strip()

    try:
        debug = parser.getboolean("Logging", "Debug", fallback=False)
    except ValueError as e:
        logger.warning(f"Ignoring configuration file {path}: {e}")
        return None

    return SignConfig(
        time_authority_url=authority or None,
        store_path=Path(store_path).expanduser() if store_path else None,
        debug=debug,
    )


def resolve_timestamp_authority(option: Optional[str], config: Optional[SignConfig]) -> Optional[str]:
    """
    Pick the timestamp authority for a signature.

    An empty option disables timestamping, a missing option falls back to
    the configuration file and then to the public default authority.

    Raises:
        ConfigurationError: the chosen URL is not a valid http(s) URL
    """
    if option is None:
        if config is not None and config.time_authority_url:
            try:
                return validate_authority_url(config.time_authority_url)
            except ConfigurationError:
                raise ConfigurationError(
                    f"The timestamp authority is not a valid URL inside configuration file: {config_path()}"
                ) from None
        return DEFAULT_TIMESTAMP_AUTHORITY
    if not option.strip():
        return None
    return validate_authority_url(option.strip())
