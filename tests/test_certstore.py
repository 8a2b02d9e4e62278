"""Tests for the certificate store and signer selection"""

import io

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from gitsmimesign.certstore import (
    SIGNATURE_ALGORITHMS,
    CertificateStore,
    HashAlgorithm,
    IncludeOption,
    IncludePolicy,
    PublicKeyAlgorithm,
    pgp_algorithm_codes,
    thumbprint,
)
from gitsmimesign.errors import (
    SignerLacksPrivateKeyError,
    SignerNotFoundError,
    UnsupportedAlgorithmError,
)

from cert_utils import cert_pem, generate, make_ca, make_leaf


@pytest.mark.parametrize(
    "oid, expected",
    [
        ("1.2.840.10045.4.1", (19, 2)),
        ("1.2.840.113549.1.1.5", (1, 2)),
        ("1.2.840.10045.4.3.2", (19, 8)),
        ("1.2.840.113549.1.1.11", (1, 8)),
        ("1.2.840.10045.4.3.3", (19, 9)),
        ("1.2.840.113549.1.1.12", (1, 9)),
        ("1.2.840.10045.4.3.4", (19, 10)),
        ("1.2.840.113549.1.1.13", (1, 10)),
    ],
)
def test_algorithm_codes(oid, expected):
    """Signature algorithm OIDs map to GnuPG algorithm and hash codes"""
    assert pgp_algorithm_codes(oid) == expected


def test_algorithm_table_values_are_closed():
    """Every entry uses the enumerated codes"""
    for pk_algorithm, hash_algorithm in SIGNATURE_ALGORITHMS.values():
        assert pk_algorithm in PublicKeyAlgorithm
        assert hash_algorithm in HashAlgorithm


@pytest.mark.parametrize("oid", ["1.2.840.113549.1.1.4", "1.3.101.112", "1.2.840.113549.1.1.10", ""])
def test_unknown_algorithm_fails_closed(oid):
    """OIDs outside the table raise"""
    with pytest.raises(UnsupportedAlgorithmError):
        pgp_algorithm_codes(oid)


@pytest.mark.parametrize(
    "value, option, limit",
    [
        (-2, IncludeOption.EXCLUDE_ROOT, None),
        (-1, IncludeOption.WHOLE_CHAIN, None),
        (0, IncludeOption.NONE, None),
        (1, IncludeOption.END_CERT_ONLY, None),
        (3, IncludeOption.UP_TO, 3),
    ],
)
def test_include_policy_from_int(value, option, limit):
    """--include-certs values convert to policies"""
    policy = IncludePolicy.from_int(value)
    assert policy.option is option
    assert policy.limit == limit


def test_include_policy_rejects_unknown():
    """Values below -2 are rejected"""
    with pytest.raises(ValueError):
        IncludePolicy.from_int(-3)


def test_include_policy_select(certs):
    """Policies pick certificates from the chain"""
    chain = [certs["signer_cert"], certs["ca_cert"]]

    assert IncludePolicy.from_int(0).select(chain) == []
    assert IncludePolicy.from_int(1).select(chain) == chain[:1]
    assert IncludePolicy.from_int(-1).select(chain) == chain
    assert IncludePolicy.from_int(-2).select(chain) == chain[:1]
    assert IncludePolicy.from_int(5).select(chain) == chain


def test_find_signer_by_email(store, certs):
    """E-mail lookup is case insensitive and accepts git's Name <address> form"""
    for identity in ("tester@example.com", "TESTER@Example.COM", "Test User <tester@example.com>"):
        signer = store.find_signer(identity)
        assert signer.certificate == certs["signer_cert"]
        assert signer.has_private_key
        assert signer.chain == [certs["ca_cert"]]


def test_find_signer_by_thumbprint(store, certs):
    """Thumbprint lookup is case insensitive"""
    fingerprint = thumbprint(certs["signer_cert"])

    assert store.find_signer(fingerprint.lower()).certificate == certs["signer_cert"]
    assert store.find_signer(fingerprint).thumbprint == fingerprint


def test_unknown_identity(store):
    """No match raises SignerNotFoundError"""
    with pytest.raises(SignerNotFoundError):
        store.find_signer("nobody@example.com")
    with pytest.raises(SignerNotFoundError):
        store.find_signer("0123456789ABCDEF")


def test_certificate_without_key(store, certs):
    """A certificate without a private key can not sign"""
    with pytest.raises(SignerLacksPrivateKeyError):
        store.find_signer(thumbprint(certs["ca_cert"]))


def test_store_is_released_on_exit(certs):
    """Entries are dropped when the store is closed"""
    with CertificateStore(certs["path"]) as store:
        assert len(store.certificates) == 2
    assert store.certificates == []


def test_missing_store_is_empty(tmp_path):
    """A missing directory is an empty store"""
    with CertificateStore(tmp_path / "missing") as store:
        with pytest.raises(SignerNotFoundError):
            store.find_signer("tester@example.com")


def test_pkcs12_bundle(tmp_path):
    """Keys and certificates are read from unencrypted PKCS#12 files"""
    ca_key, ca_cert = make_ca()
    key, cert = make_leaf(ca_key, ca_cert, "Bundle Signer", email="bundle@example.com")
    bundle = pkcs12.serialize_key_and_certificates(
        b"bundle", key, cert, [ca_cert], serialization.NoEncryption()
    )
    (tmp_path / "bundle.p12").write_bytes(bundle)

    with CertificateStore(tmp_path) as store:
        signer = store.find_signer("bundle@example.com")

    assert signer.certificate == cert
    assert signer.chain == [ca_cert]


def test_der_certificate(tmp_path):
    """DER files add certificates"""
    _, ca_cert = make_ca()
    (tmp_path / "ca.der").write_bytes(ca_cert.public_bytes(serialization.Encoding.DER))
    (tmp_path / "ca.pem").write_bytes(cert_pem(ca_cert))

    with CertificateStore(tmp_path) as store:
        assert store.certificates == [ca_cert]


def test_ec_signer_codes(tmp_path):
    """An ECDSA chain maps to algorithm 19"""
    generate(tmp_path, email="ec@example.com", key_type="ec")

    with CertificateStore(tmp_path) as store:
        signer = store.find_signer("ec@example.com")

    assert signer.algorithm_codes == (PublicKeyAlgorithm.ECDSA, HashAlgorithm.SHA256)


def test_list_keys(store, certs):
    """--list-keys prints every certificate"""
    out = io.StringIO()
    store.list_keys(out)
    text = out.getvalue()

    assert f"ID: {thumbprint(certs['signer_cert'])}" in text
    assert f"ID: {thumbprint(certs['ca_cert'])}" in text
    assert "Emails: tester@example.com, tester@example.com" in text
    assert "Signature Algorithm: sha256RSA" in text
    assert "\n\nID: " in text
