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

"""The identity of the calling application, as computed locally."""

from __future__ import annotations

import abc
import hashlib
import logging
import re
import zipfile
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from .utils import b64_encode, sha256

logger = logging.getLogger(__name__)

_SIGNATURE_BLOCK_RE = re.compile(r"META-INF/[^/]+\.(RSA|DSA|EC)", re.IGNORECASE)


@dataclass(frozen=True)
class ApplicationIdentity:
    """Package name and base64 SHA-256 digests of an application."""

    package_name: str
    certificate_digests: Tuple[str, ...]
    apk_digest: Optional[str] = None


class IdentityProvider(abc.ABC):
    """Provides the identity of the application being attested."""

    @abc.abstractmethod
    def get_identity(self) -> ApplicationIdentity:
        """Return the identity. Must be pure for a given installed binary."""


class StaticIdentityProvider(IdentityProvider):
    """An identity known up front, e.g. from configuration."""

    def __init__(
        self,
        package_name: str,
        certificate_digests: Sequence[str],
        apk_digest: Optional[str] = None,
    ):
        self._identity = ApplicationIdentity(
            package_name, tuple(certificate_digests), apk_digest
        )

    def get_identity(self):
        return self._identity


def compute_apk_digest(path: str) -> str:
    """Base64 SHA-256 digest of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return b64_encode(digest.digest())


def compute_certificate_digests(path: str) -> Tuple[str, ...]:
    """Base64 SHA-256 digests of the signing certificates of an APK.

    The PKCS#7 signature blocks of the JAR signing scheme are read in name
    order, and the first certificate of each block is taken as its signer.
    """
    digests = []
    with zipfile.ZipFile(path) as apk:
        names = sorted(n for n in apk.namelist() if _SIGNATURE_BLOCK_RE.fullmatch(n))
        for name in names:
            certificates = pkcs7.load_der_pkcs7_certificates(apk.read(name))
            if not certificates:
                raise ValueError(f"No certificate in signature block {name}")
            der = certificates[0].public_bytes(serialization.Encoding.DER)
            digests.append(b64_encode(sha256(der)))
    if not digests:
        raise ValueError(f"No JAR signature blocks found in {path}")
    return tuple(digests)


class ApkIdentityProvider(IdentityProvider):
    """Computes the identity from an APK file, once.

    :param package_name: The package name of the application.
    :param apk_path: Path to the APK file.
    """

    def __init__(self, package_name: str, apk_path: str):
        self.package_name = package_name
        self.apk_path = apk_path
        self._identity: Optional[ApplicationIdentity] = None

    def get_identity(self):
        if self._identity is None:
            logger.debug("Computing identity digests of %s", self.apk_path)
            self._identity = ApplicationIdentity(
                self.package_name,
                compute_certificate_digests(self.apk_path),
                compute_apk_digest(self.apk_path),
            )
        return self._identity
