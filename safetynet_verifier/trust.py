# Copyright (c) 2018 Yubico AB
# All rights reserved.
#
#   Redistribution and use in source and binary forms, with or
#   without modification, are permitted provided that the following
#   conditions are met:
#
#    1. Redistributions of source code must retain the above copyright
#       notice, this list of conditions and the following disclaimer.
#    2. Redistributions in binary form must reproduce the above
#       copyright notice, this list of conditions and the following
#       disclaimer in the documentation and/or other materials provided
#       with the distribution.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS
# "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT
# LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS
# FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE
# COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT,
# INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING,
# BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES;
# LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
# CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT
# LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN
# ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

"""Trust anchors and X.509 certificate chain validation."""

from __future__ import annotations

import abc
import base64
import binascii
import ipaddress
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import certifi
from cryptography import x509
from cryptography.exceptions import InvalidSignature as _InvalidSignature
from cryptography.exceptions import UnsupportedAlgorithm as _UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID

from .exceptions import ChainNotTrusted
from .hostname import bind_hostname, get_dns_identities

logger = logging.getLogger(__name__)

_PEM_CERT_PATTERN = re.compile(
    r"-----BEGIN CERTIFICATE-----\s*(?P<body>.*?)\s*-----END CERTIFICATE-----",
    re.DOTALL,
)


def _fingerprint(cert: x509.Certificate) -> bytes:
    return cert.fingerprint(hashes.SHA256())


def load_pem_certificates(text: str) -> List[x509.Certificate]:
    """Load every certificate of a PEM bundle.

    Entries which cannot be parsed are skipped with a warning, so a single
    exotic root in a system bundle doesn't disable the whole store.
    """
    certificates = []
    for match in _PEM_CERT_PATTERN.finditer(text):
        body = re.sub(r"[^A-Za-z0-9+/=]", "", match.group("body"))
        try:
            certificates.append(x509.load_der_x509_certificate(base64.b64decode(body)))
        except (ValueError, binascii.Error) as e:
            logger.warning("Skipping unparsable certificate in trust bundle: %s", e)
    return certificates


class TrustAnchorProvider(abc.ABC):
    """Provides the root certificates that certificate chains must lead to."""

    @abc.abstractmethod
    def get_trust_anchors(self) -> Sequence[x509.Certificate]:
        """Return the trusted root certificates."""


class StaticTrustStore(TrustAnchorProvider):
    """A fixed set of trust anchors, given as certificates or DER bytes."""

    def __init__(self, anchors: Iterable[Union[x509.Certificate, bytes]]):
        self._anchors = [
            a if isinstance(a, x509.Certificate) else x509.load_der_x509_certificate(a)
            for a in anchors
        ]

    def get_trust_anchors(self):
        return list(self._anchors)


class PemBundleTrustStore(TrustAnchorProvider):
    """Trust anchors read from a PEM bundle file, loaded on first use."""

    def __init__(self, path: str):
        self.path = path
        self._anchors: Optional[List[x509.Certificate]] = None

    def get_trust_anchors(self):
        if self._anchors is None:
            with open(self.path, "r", encoding="ascii", errors="replace") as f:
                anchors = load_pem_certificates(f.read())
            logger.debug("Loaded %d trust anchors from %s", len(anchors), self.path)
            self._anchors = anchors
        return list(self._anchors)


class CertifiTrustStore(PemBundleTrustStore):
    """The Mozilla root store, as shipped by certifi."""

    def __init__(self):
        super().__init__(certifi.where())


def _check_validity(cert: x509.Certificate, now: datetime) -> None:
    if now < cert.not_valid_before_utc:
        raise ChainNotTrusted(
            f"Certificate {cert.subject.rfc4514_string()} is not yet valid"
        )
    if now > cert.not_valid_after_utc:
        raise ChainNotTrusted(
            f"Certificate {cert.subject.rfc4514_string()} has expired"
        )


def _check_issuer_constraints(cert: x509.Certificate, ca_below: int) -> None:
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        raise ChainNotTrusted(
            f"Issuer {cert.subject.rfc4514_string()} has no Basic Constraints"
        )
    if not bc.ca:
        raise ChainNotTrusted(
            f"Issuer {cert.subject.rfc4514_string()} is not a CA certificate"
        )
    if bc.path_length is not None and ca_below > bc.path_length:
        raise ChainNotTrusted(
            f"Path length constraint of {cert.subject.rfc4514_string()} exceeded"
        )
    try:
        ku = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        if not ku.key_cert_sign:
            raise ChainNotTrusted(
                f"Issuer {cert.subject.rfc4514_string()} may not sign certificates"
            )
    except x509.ExtensionNotFound:
        pass


def _check_leaf_usage(cert: x509.Certificate) -> None:
    try:
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound:
        return
    if (
        ExtendedKeyUsageOID.SERVER_AUTH not in eku
        and ExtendedKeyUsageOID.ANY_EXTENDED_KEY_USAGE not in eku
    ):
        raise ChainNotTrusted("Leaf certificate is not valid for server authentication")


# Critical extensions which are enforced during path validation, any other
# critical extension makes a certificate unusable.
_PROCESSED_EXTENSIONS = frozenset(
    [
        ExtensionOID.BASIC_CONSTRAINTS,
        ExtensionOID.KEY_USAGE,
        ExtensionOID.EXTENDED_KEY_USAGE,
        ExtensionOID.SUBJECT_ALTERNATIVE_NAME,
        ExtensionOID.NAME_CONSTRAINTS,
    ]
)


def _check_critical_extensions(cert: x509.Certificate) -> None:
    for ext in cert.extensions:
        if ext.critical and ext.oid not in _PROCESSED_EXTENSIONS:
            raise ChainNotTrusted(
                f"Certificate {cert.subject.rfc4514_string()} has unsupported "
                f"critical extension {ext.oid.dotted_string}"
            )


def _constrained_names(cert: x509.Certificate, is_leaf: bool) -> Dict[type, List[Any]]:
    """The names of ``cert`` which name constraints apply to, by type."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        general_names = list(san.value)
    except x509.ExtensionNotFound:
        general_names = []
    names: Dict[type, List[Any]] = {}
    for name in general_names:
        names.setdefault(type(name), []).append(name.value)
    if len(cert.subject):
        names.setdefault(x509.DirectoryName, []).append(cert.subject)
    if is_leaf:
        # The same identities the hostname is matched against
        names[x509.DNSName] = get_dns_identities(cert)
    return names


def _within_subtree(name_type: type, value: Any, base: Any) -> bool:
    if name_type is x509.DNSName:
        name = value.lower().rstrip(".")
        base = base.lower().rstrip(".")
        if not base:
            return True
        if base.startswith("."):
            return name.endswith(base)
        return name == base or name.endswith("." + base)
    if name_type is x509.IPAddress:
        return (
            isinstance(base, (ipaddress.IPv4Network, ipaddress.IPv6Network))
            and value.version == base.version
            and value in base
        )
    if name_type is x509.DirectoryName:
        return list(value.rdns)[: len(base.rdns)] == list(base.rdns)
    raise ChainNotTrusted(f"Unsupported name constraint type {name_type.__name__}")


def _check_name_constraints(
    issuer: x509.Certificate, subordinates: Sequence[x509.Certificate]
) -> None:
    """Apply the NameConstraints of ``issuer`` to the certificates below it.

    ``subordinates`` lists the certificates below the issuer, leaf first.
    """
    try:
        nc = issuer.extensions.get_extension_for_class(x509.NameConstraints).value
    except x509.ExtensionNotFound:
        return

    permitted: Dict[type, List[Any]] = {}
    for subtree in nc.permitted_subtrees or ():
        permitted.setdefault(type(subtree), []).append(subtree.value)
    excluded = list(nc.excluded_subtrees or ())

    for position, cert in enumerate(subordinates):
        names = _constrained_names(cert, position == 0)
        for name_type, values in names.items():
            for value in values:
                bases = permitted.get(name_type)
                if bases is not None and not any(
                    _within_subtree(name_type, value, b) for b in bases
                ):
                    raise ChainNotTrusted(
                        f"Name {value} of {cert.subject.rfc4514_string()} is not "
                        f"permitted by the name constraints of "
                        f"{issuer.subject.rfc4514_string()}"
                    )
                if any(
                    type(e) is name_type and _within_subtree(name_type, value, e.value)
                    for e in excluded
                ):
                    raise ChainNotTrusted(
                        f"Name {value} of {cert.subject.rfc4514_string()} is "
                        f"excluded by the name constraints of "
                        f"{issuer.subject.rfc4514_string()}"
                    )


def verify_x509_chain(chain: Sequence[x509.Certificate]) -> None:
    """Verifies a chain of certificates.

    Checks that the first item in the chain is signed by the next, and so on.
    The first item is the leaf, the last is the root.
    """
    for child, issuer in zip(chain, chain[1:]):
        if child.issuer != issuer.subject:
            raise ChainNotTrusted(
                f"Certificate {child.subject.rfc4514_string()} is not issued by "
                f"{issuer.subject.rfc4514_string()}"
            )
        pub = issuer.public_key()
        try:
            hash_algorithm = child.signature_hash_algorithm
            if hash_algorithm is None:
                raise ChainNotTrusted("Certificate missing signature hash algorithm")
            if isinstance(pub, rsa.RSAPublicKey):
                pub.verify(
                    child.signature,
                    child.tbs_certificate_bytes,
                    padding.PKCS1v15(),
                    hash_algorithm,
                )
            elif isinstance(pub, ec.EllipticCurvePublicKey):
                pub.verify(
                    child.signature,
                    child.tbs_certificate_bytes,
                    ec.ECDSA(hash_algorithm),
                )
            else:
                raise ChainNotTrusted(
                    f"Unsupported issuer key type {type(pub).__name__}"
                )
        except (_InvalidSignature, _UnsupportedAlgorithm) as e:
            raise ChainNotTrusted(
                f"Invalid signature on {child.subject.rfc4514_string()}"
            ) from e


class ChainValidator(abc.ABC):
    """Validates a certificate chain for a server identity.

    A single call validates the trust path and binds the leaf to the
    hostname, so the checks always apply to the same certificate.
    """

    @abc.abstractmethod
    def validate(
        self, chain: Sequence[x509.Certificate], hostname: str
    ) -> x509.Certificate:
        """Validate ``chain`` (leaf first) for ``hostname``.

        :return: The validated leaf certificate.
        :raises ChainNotTrusted: If the chain has no valid path to a trust
            anchor.
        :raises IssuerHostnameMismatch: If the leaf is trusted, but not
            issued for ``hostname``.
        """


class X509ChainValidator(ChainValidator):
    """Offline path validation against a :class:`TrustAnchorProvider`.

    Revocation is not checked, as that would require network access.

    :param trust_anchors: Provider of the trusted roots, by default the
        certifi bundle.
    :param clock: Returns the verification time as an aware datetime.
    """

    def __init__(
        self,
        trust_anchors: Optional[TrustAnchorProvider] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.trust_anchors = trust_anchors or CertifiTrustStore()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _build_path(
        self, chain: Sequence[x509.Certificate]
    ) -> List[x509.Certificate]:
        anchors = self.trust_anchors.get_trust_anchors()
        by_fingerprint: Dict[bytes, x509.Certificate] = {
            _fingerprint(a): a for a in anchors
        }

        # The chain may carry its own root, or any trusted certificate
        for i, cert in enumerate(chain):
            if _fingerprint(cert) in by_fingerprint:
                return list(chain[: i + 1])

        last = chain[-1]
        for anchor in anchors:
            if anchor.subject != last.issuer:
                continue
            try:
                verify_x509_chain([last, anchor])
            except ChainNotTrusted:
                continue
            return list(chain) + [anchor]
        raise ChainNotTrusted(
            f"No trusted root found for issuer {last.issuer.rfc4514_string()}"
        )

    def validate(self, chain, hostname):
        if not chain:
            raise ChainNotTrusted("Empty certificate chain")
        now = self._clock()
        path = self._build_path(chain)

        for cert in path:
            _check_validity(cert, now)
        # The anchor is trusted as configured, its own extensions aside
        for cert in path[:-1]:
            _check_critical_extensions(cert)
        for ca_below, issuer in enumerate(path[1:]):
            # ca_below counts the intermediate CAs between issuer and leaf
            _check_issuer_constraints(issuer, ca_below)
            _check_name_constraints(issuer, path[: ca_below + 1])
        _check_leaf_usage(path[0])
        verify_x509_chain(path)
        logger.debug(
            "Certificate chain of length %d trusted via %s",
            len(path),
            path[-1].subject.rfc4514_string(),
        )

        return bind_hostname(path[0], hostname)
