import logging
from datetime import timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from safetynet_verifier.exceptions import ChainNotTrusted, IssuerHostnameMismatch
from safetynet_verifier.trust import (
    CertifiTrustStore,
    PemBundleTrustStore,
    StaticTrustStore,
    X509ChainValidator,
    load_pem_certificates,
    verify_x509_chain,
)

from .pki import NOW, fixed_clock, generate_key, make_certificate, to_pem

HOSTNAME = "attest.android.com"


def _validator(pki, anchors=None, clock=fixed_clock):
    return X509ChainValidator(
        StaticTrustStore(anchors if anchors is not None else [pki.root]), clock
    )


class TestX509ChainValidator:
    def test_valid_chain_returns_leaf(self, pki):
        assert _validator(pki).validate(pki.chain(), HOSTNAME) is pki.leaf

    def test_chain_including_root(self, pki):
        chain = pki.chain() + [pki.root]
        assert _validator(pki).validate(chain, HOSTNAME) is pki.leaf

    def test_intermediate_as_anchor(self, pki):
        validator = _validator(pki, anchors=[pki.intermediate])
        assert validator.validate(pki.chain(), HOSTNAME) is pki.leaf
        assert validator.validate([pki.leaf], HOSTNAME) is pki.leaf

    def test_missing_intermediate(self, pki):
        with pytest.raises(ChainNotTrusted):
            _validator(pki).validate([pki.leaf], HOSTNAME)

    def test_empty_chain(self, pki):
        with pytest.raises(ChainNotTrusted):
            _validator(pki).validate([], HOSTNAME)

    def test_self_signed(self, pki):
        with pytest.raises(ChainNotTrusted):
            _validator(pki).validate([pki.self_signed], HOSTNAME)

    def test_untrusted_root(self, pki):
        other_root_key = generate_key()
        other_root = make_certificate("Other Root", other_root_key, ca=True)
        with pytest.raises(ChainNotTrusted):
            _validator(pki, anchors=[other_root]).validate(pki.chain(), HOSTNAME)

    def test_expired_leaf(self, pki):
        with pytest.raises(ChainNotTrusted, match="expired"):
            _validator(pki).validate(pki.chain(pki.expired_leaf), HOSTNAME)

    def test_not_yet_valid(self, pki):
        validator = _validator(pki, clock=lambda: NOW - timedelta(days=7))
        with pytest.raises(ChainNotTrusted, match="not yet valid"):
            validator.validate(pki.chain(), HOSTNAME)

    def test_other_hostname(self, pki):
        with pytest.raises(IssuerHostnameMismatch):
            _validator(pki).validate(pki.chain(pki.other_leaf), HOSTNAME)

    def test_hostname_is_a_parameter(self, pki):
        validator = _validator(pki)
        leaf = validator.validate(pki.chain(pki.other_leaf), "other.example.com")
        assert leaf is pki.other_leaf

    def test_issuer_must_be_ca(self, pki):
        key = generate_key()
        child = make_certificate(
            "attest.android.com",
            key,
            issuer=pki.leaf,
            issuer_key=pki.leaf_key,
            dns_names=["attest.android.com"],
        )
        with pytest.raises(ChainNotTrusted, match="not a CA"):
            _validator(pki).validate([child] + pki.chain(), HOSTNAME)

    def test_path_length_constraint(self, pki):
        sub_key = generate_key()
        sub_ca = make_certificate(
            "Sub CA",
            sub_key,
            issuer=pki.intermediate,
            issuer_key=pki.intermediate_key,
            ca=True,
        )
        leaf = make_certificate(
            "attest.android.com",
            pki.leaf_key,
            issuer=sub_ca,
            issuer_key=sub_key,
            dns_names=["attest.android.com"],
        )
        with pytest.raises(ChainNotTrusted, match="Path length"):
            _validator(pki).validate([leaf, sub_ca, pki.intermediate], HOSTNAME)

    def test_leaf_must_allow_server_auth(self, pki):
        leaf = pki.issue_leaf(
            "attest.android.com", usages=(ExtendedKeyUsageOID.CLIENT_AUTH,)
        )
        with pytest.raises(ChainNotTrusted, match="server authentication"):
            _validator(pki).validate(pki.chain(leaf), HOSTNAME)

    def test_forged_intermediate(self, pki):
        # Same names as the real intermediate, but not signed by the root
        forged_key = generate_key()
        forged = make_certificate(
            "Test Intermediate CA",
            forged_key,
            issuer=pki.root,
            issuer_key=forged_key,
            ca=True,
        )
        leaf = make_certificate(
            "attest.android.com",
            pki.leaf_key,
            issuer=forged,
            issuer_key=forged_key,
            dns_names=["attest.android.com"],
        )
        with pytest.raises(ChainNotTrusted):
            _validator(pki).validate([leaf, forged], HOSTNAME)


def _constrained_ca(pki, permitted=None, excluded=None):
    key = generate_key()
    ca = make_certificate(
        "Constrained CA",
        key,
        issuer=pki.root,
        issuer_key=pki.root_key,
        ca=True,
        path_length=0,
        extensions=[(x509.NameConstraints(permitted, excluded), True)],
    )
    return ca, key


def _leaf_under(ca, ca_key, common_name, **kwargs):
    kwargs.setdefault("dns_names", [common_name])
    return make_certificate(
        common_name, generate_key(), issuer=ca, issuer_key=ca_key, **kwargs
    )


class TestNameConstraints:
    def test_leaf_outside_permitted_subtree(self, pki):
        ca, key = _constrained_ca(pki, permitted=[x509.DNSName("example.com")])
        leaf = _leaf_under(ca, key, HOSTNAME)
        with pytest.raises(ChainNotTrusted, match="not permitted"):
            _validator(pki).validate([leaf, ca], HOSTNAME)

    def test_leaf_inside_permitted_subtree(self, pki):
        ca, key = _constrained_ca(pki, permitted=[x509.DNSName("example.com")])
        leaf = _leaf_under(ca, key, "other.example.com")
        assert _validator(pki).validate([leaf, ca], "other.example.com") is leaf

    def test_common_name_is_constrained(self, pki):
        ca, key = _constrained_ca(pki, permitted=[x509.DNSName("example.com")])
        leaf = _leaf_under(ca, key, HOSTNAME, dns_names=None)
        with pytest.raises(ChainNotTrusted, match="not permitted"):
            _validator(pki).validate([leaf, ca], HOSTNAME)

    def test_excluded_subtree(self, pki):
        ca, key = _constrained_ca(pki, excluded=[x509.DNSName("android.com")])
        leaf = _leaf_under(ca, key, HOSTNAME)
        with pytest.raises(ChainNotTrusted, match="excluded"):
            _validator(pki).validate([leaf, ca], HOSTNAME)

    def test_excluded_subtree_is_label_aligned(self, pki):
        ca, key = _constrained_ca(pki, excluded=[x509.DNSName("droid.com")])
        leaf = _leaf_under(ca, key, HOSTNAME)
        assert _validator(pki).validate([leaf, ca], HOSTNAME) is leaf

    def test_directory_name_constraint(self, pki):
        permitted = x509.Name(
            [x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Org")]
        )
        ca, key = _constrained_ca(pki, permitted=[x509.DirectoryName(permitted)])
        leaf = _leaf_under(ca, key, HOSTNAME)
        with pytest.raises(ChainNotTrusted, match="not permitted"):
            _validator(pki).validate([leaf, ca], HOSTNAME)


class TestCriticalExtensions:
    UNKNOWN = x509.UnrecognizedExtension(
        x509.ObjectIdentifier("1.3.6.1.4.1.99999.1"), b"\x05\x00"
    )

    def test_unknown_critical_extension_on_leaf(self, pki):
        leaf = pki.issue_leaf(HOSTNAME, extensions=[(self.UNKNOWN, True)])
        with pytest.raises(ChainNotTrusted, match="1.3.6.1.4.1.99999.1"):
            _validator(pki).validate(pki.chain(leaf), HOSTNAME)

    def test_unknown_critical_extension_on_intermediate(self, pki):
        key = generate_key()
        ca = make_certificate(
            "Extended CA",
            key,
            issuer=pki.root,
            issuer_key=pki.root_key,
            ca=True,
            extensions=[(self.UNKNOWN, True)],
        )
        leaf = _leaf_under(ca, key, HOSTNAME)
        with pytest.raises(ChainNotTrusted, match="critical extension"):
            _validator(pki).validate([leaf, ca], HOSTNAME)

    def test_unknown_non_critical_extension(self, pki):
        leaf = pki.issue_leaf(HOSTNAME, extensions=[(self.UNKNOWN, False)])
        assert _validator(pki).validate(pki.chain(leaf), HOSTNAME) is leaf

    def test_trust_anchor_extensions_are_not_checked(self, pki):
        anchor_key = generate_key()
        anchor = make_certificate(
            "Extended Root",
            anchor_key,
            ca=True,
            extensions=[(self.UNKNOWN, True)],
        )
        leaf = _leaf_under(anchor, anchor_key, HOSTNAME)
        assert _validator(pki, anchors=[anchor]).validate([leaf], HOSTNAME) is leaf


def test_verify_x509_chain(pki):
    verify_x509_chain([pki.leaf, pki.intermediate, pki.root])

    with pytest.raises(ChainNotTrusted, match="is not issued by"):
        verify_x509_chain([pki.leaf, pki.root])


class TestTrustStores:
    def test_static_store_accepts_der(self, pki):
        der = pki.root.public_bytes(serialization.Encoding.DER)
        assert StaticTrustStore([der]).get_trust_anchors() == [pki.root]

    def test_load_pem_skips_garbage(self, pki, caplog):
        bundle = (
            to_pem(pki.root)
            + "-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n"
            + to_pem(pki.intermediate)
        )
        with caplog.at_level(logging.WARNING, logger="safetynet_verifier.trust"):
            certificates = load_pem_certificates(bundle)

        assert certificates == [pki.root, pki.intermediate]
        assert "Skipping unparsable certificate" in caplog.text

    def test_pem_bundle_store(self, pki, tmp_path):
        path = tmp_path / "roots.pem"
        path.write_text(to_pem(pki.root))
        store = PemBundleTrustStore(str(path))

        assert store.get_trust_anchors() == [pki.root]
        path.write_text("")
        # Loaded once
        assert store.get_trust_anchors() == [pki.root]

    def test_pem_bundle_store_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            PemBundleTrustStore(str(tmp_path / "missing.pem")).get_trust_anchors()

    def test_certifi_store(self, pki):
        anchors = CertifiTrustStore().get_trust_anchors()
        assert len(anchors) > 50
        assert pki.root not in anchors
