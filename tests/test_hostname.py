import pytest

from safetynet_verifier.exceptions import FailureKind, IssuerHostnameMismatch
from safetynet_verifier.hostname import (
    ATTESTATION_HOSTNAME,
    bind_hostname,
    get_dns_identities,
    match_hostname_pattern,
)

from .pki import make_certificate


@pytest.mark.parametrize(
    "pattern, hostname",
    [
        ("attest.android.com", "attest.android.com"),
        ("ATTEST.Android.COM", "attest.android.com"),
        ("attest.android.com.", "attest.android.com"),
        ("*.android.com", "attest.android.com"),
        ("*.ANDROID.com", "Attest.Android.Com"),
    ],
)
def test_matching_patterns(pattern, hostname):
    assert match_hostname_pattern(pattern, hostname)


@pytest.mark.parametrize(
    "pattern, hostname",
    [
        ("other.example.com", "attest.android.com"),
        ("android.com", "attest.android.com"),
        ("attest.android.com.evil.com", "attest.android.com"),
        ("*.android.com", "a.attest.android.com"),
        ("*.android.com", "android.com"),
        ("*.com", "android.com"),
        ("*", "attest.android.com"),
        ("att*.android.com", "attest.android.com"),
        ("*.*.com", "attest.android.com"),
        ("attest.*.com", "attest.android.com"),
        ("", "attest.android.com"),
    ],
)
def test_non_matching_patterns(pattern, hostname):
    assert not match_hostname_pattern(pattern, hostname)


def test_san_takes_precedence_over_common_name(pki):
    cert = make_certificate(
        "attest.android.com",
        pki.leaf_key,
        issuer=pki.intermediate,
        issuer_key=pki.intermediate_key,
        dns_names=["other.example.com"],
    )

    assert get_dns_identities(cert) == ["other.example.com"]
    with pytest.raises(IssuerHostnameMismatch):
        bind_hostname(cert)


def test_common_name_fallback(pki):
    cert = make_certificate("attest.android.com", pki.leaf_key)
    assert get_dns_identities(cert) == ["attest.android.com"]
    assert bind_hostname(cert) is cert


def test_wildcard_san(pki):
    cert = pki.issue_leaf("wildcard", dns_names=["*.android.com"])
    assert bind_hostname(cert, ATTESTATION_HOSTNAME) is cert


def test_bind_hostname(pki):
    assert bind_hostname(pki.leaf) is pki.leaf

    with pytest.raises(IssuerHostnameMismatch) as exc_info:
        bind_hostname(pki.other_leaf)
    assert exc_info.value.kind is FailureKind.ISSUER_HOSTNAME_MISMATCH
    assert "other.example.com" in str(exc_info.value)


def test_attestation_hostname():
    assert ATTESTATION_HOSTNAME == "attest.android.com"
