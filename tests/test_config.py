"""Tests for the configuration file and timestamp authority resolution"""

from pathlib import Path

import pytest

from gitsmimesign.config import (
    DEFAULT_TIMESTAMP_AUTHORITY,
    SignConfig,
    config_path,
    load_config,
    resolve_timestamp_authority,
)
from gitsmimesign.errors import ConfigurationError


def write_config(tmp_path, text):
    path = tmp_path / ".gitsmimesignconfig"
    path.write_text(text)
    return path


def test_missing_file(tmp_path):
    assert load_config(tmp_path / "missing") is None


def test_config_path_is_in_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert config_path() == tmp_path / ".gitsmimesignconfig"


def test_full_config(tmp_path):
    """All sections are read"""
    path = write_config(
        tmp_path,
        "[Certificate]\n"
        "TimeAuthorityUrl = https://tsa.example.com/rfc3161\n"
        "StorePath = /srv/certs\n"
        "\n"
        "[Logging]\n"
        "Debug = yes\n",
    )

    assert load_config(path) == SignConfig(
        time_authority_url="https://tsa.example.com/rfc3161",
        store_path=Path("/srv/certs"),
        debug=True,
    )


def test_empty_config(tmp_path):
    assert load_config(write_config(tmp_path, "")) == SignConfig()


def test_invalid_authority_is_an_error_when_used(tmp_path):
    """A non-http URL in the file is rejected once signing falls back to it"""
    path = write_config(tmp_path, "[Certificate]\nTimeAuthorityUrl = ftp://tsa.example.com\n")
    config = load_config(path)

    assert config.time_authority_url == "ftp://tsa.example.com"
    with pytest.raises(ConfigurationError):
        resolve_timestamp_authority(None, config)
    assert resolve_timestamp_authority("https://tsa.example.com", config) == "https://tsa.example.com"
    assert resolve_timestamp_authority("", config) is None


def test_malformed_file_is_ignored(tmp_path):
    assert load_config(write_config(tmp_path, "this is not ini\n")) is None


def test_malformed_boolean_is_ignored(tmp_path):
    assert load_config(write_config(tmp_path, "[Logging]\nDebug = perhaps\n")) is None


@pytest.mark.parametrize(
    "option, config, expected",
    [
        (None, None, DEFAULT_TIMESTAMP_AUTHORITY),
        (None, SignConfig(), DEFAULT_TIMESTAMP_AUTHORITY),
        (None, SignConfig(time_authority_url="http://tsa.example.com"), "http://tsa.example.com"),
        ("https://other.example.com", SignConfig(time_authority_url="http://tsa.example.com"), "https://other.example.com"),
        ("", SignConfig(time_authority_url="http://tsa.example.com"), None),
        ("  ", None, None),
    ],
)
def test_resolve_timestamp_authority(option, config, expected):
    """The command line wins, then the file, then the default authority"""
    assert resolve_timestamp_authority(option, config) == expected


def test_invalid_authority_option():
    with pytest.raises(ConfigurationError):
        resolve_timestamp_authority("timestamp.example.com", None)
