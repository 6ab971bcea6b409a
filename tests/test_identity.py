import base64
import hashlib
import zipfile

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from safetynet_verifier.identity import (
    ApkIdentityProvider,
    ApplicationIdentity,
    StaticIdentityProvider,
    compute_apk_digest,
    compute_certificate_digests,
)


def _signature_block(cert, key):
    return (
        pkcs7.PKCS7SignatureBuilder()
        .set_data(b"Signature-Version: 1.0\r\n")
        .add_signer(cert, key, hashes.SHA256())
        .sign(serialization.Encoding.DER, [pkcs7.PKCS7Options.DetachedSignature])
    )


def _cert_digest(cert):
    der = cert.public_bytes(serialization.Encoding.DER)
    return base64.b64encode(hashlib.sha256(der).digest()).decode("ascii")


@pytest.fixture
def apk(pki, tmp_path):
    path = tmp_path / "app.apk"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("AndroidManifest.xml", b"\x03\x00\x08\x00")
        zf.writestr("classes.dex", b"dex\n035\x00")
        zf.writestr("META-INF/MANIFEST.MF", b"Manifest-Version: 1.0\r\n")
        zf.writestr("META-INF/ZSIGNER.RSA", _signature_block(pki.root, pki.root_key))
        zf.writestr("META-INF/CERT.RSA", _signature_block(pki.leaf, pki.leaf_key))
        zf.writestr("META-INF/nested/IGNORED.RSA", b"not a signature block")
    return path


def test_static_identity_provider():
    provider = StaticIdentityProvider("com.example", ["b", "a"], "apk")
    assert provider.get_identity() == ApplicationIdentity("com.example", ("b", "a"), "apk")


def test_compute_apk_digest(tmp_path):
    path = tmp_path / "file.bin"
    data = b"\x00\x01" * 100000
    path.write_bytes(data)

    expected = base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")
    assert compute_apk_digest(str(path)) == expected


def test_compute_certificate_digests(pki, apk):
    assert compute_certificate_digests(str(apk)) == (
        _cert_digest(pki.leaf),
        _cert_digest(pki.root),
    )


def test_unsigned_apk(tmp_path):
    path = tmp_path / "unsigned.apk"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("classes.dex", b"dex\n035\x00")
    with pytest.raises(ValueError):
        compute_certificate_digests(str(path))


def test_apk_identity_provider(pki, apk):
    provider = ApkIdentityProvider("com.example.attested", str(apk))
    identity = provider.get_identity()

    assert identity.package_name == "com.example.attested"
    assert identity.certificate_digests == (
        _cert_digest(pki.leaf),
        _cert_digest(pki.root),
    )
    assert identity.apk_digest == compute_apk_digest(str(apk))
    assert provider.get_identity() is identity
