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

"""Offline verification of attestation responses."""

from __future__ import annotations

import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, ClassVar, List, Optional, Sequence, Tuple, Type, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature as _InvalidSignature
from cryptography.exceptions import UnsupportedAlgorithm as _UnsupportedAlgorithm

from .exceptions import (
    FailureKind,
    InvalidCertificateEncoding,
    MissingCertificateChain,
    SignatureInvalid,
    VerificationError,
)
from .hostname import ATTESTATION_HOSTNAME
from .identity import IdentityProvider
from .jws import JsonWebSignature, JwsAlgorithm, JwsHeader
from .payload import PayloadValidator, VerificationContext
from .statement import AttestationStatement, parse_attestation
from .trust import ChainValidator, TrustAnchorProvider, X509ChainValidator
from .utils import b64_decode

logger = logging.getLogger(__name__)


def decode_certificate_chain(chain: Sequence[str]) -> List[x509.Certificate]:
    """Decode the base64 DER certificates of an x5c header, leaf first.

    :raises InvalidCertificateEncoding: If any entry can't be decoded.
    """
    certificates = []
    for index, cert_b64 in enumerate(chain):
        try:
            certificates.append(x509.load_der_x509_certificate(b64_decode(cert_b64)))
        except (ValueError, binascii.Error) as e:
            raise InvalidCertificateEncoding(
                f"Certificate {index} of the chain could not be decoded: {e}"
            ) from e
    return certificates


class SignatureVerifier:
    """Verifies the signature of a JWS using its embedded certificate chain.

    Currently only ``RS256`` is supported. The chain must be trusted for the
    attestation hostname before the signature is checked with the leaf key.

    :param chain_validator: Validates the embedded chain, by default against
        the certifi root store.
    """

    def __init__(self, chain_validator: Optional[ChainValidator] = None):
        self.chain_validator = chain_validator or X509ChainValidator()

    def verify(
        self, header: JwsHeader, signed_content: bytes, signature: bytes
    ) -> x509.Certificate:
        """Verify ``signature`` over ``signed_content``.

        :return: The leaf certificate which signed the content.
        """
        algorithm = JwsAlgorithm.for_name(header.alg)

        if not header.certificate_chain:
            raise MissingCertificateChain("No certificates found in header")
        certificates = decode_certificate_chain(header.certificate_chain)

        leaf = self.chain_validator.validate(certificates, ATTESTATION_HOSTNAME)

        try:
            algorithm(leaf.public_key()).verify(signed_content, signature)
        except (_InvalidSignature, _UnsupportedAlgorithm) as e:
            raise SignatureInvalid("Signature verification failed") from e
        return leaf


@dataclass(frozen=True)
class VerificationSuccess:
    """A statement which passed verification.

    :ivar statement: The verified attestation statement.
    :ivar certificate: The leaf certificate that signed the response.
    :ivar header: The decoded JWS header.
    """

    statement: Any
    certificate: x509.Certificate
    header: JwsHeader

    ok: ClassVar[bool] = True

    def unwrap(self) -> Any:
        return self.statement


@dataclass(frozen=True)
class VerificationFailure:
    """A response which failed verification, with the reason."""

    error: VerificationError

    ok: ClassVar[bool] = False

    @property
    def kind(self) -> FailureKind:
        return self.error.kind

    @property
    def detail(self) -> str:
        return self.error.detail

    @property
    def statement(self) -> Optional[Any]:
        """The decoded statement, if any. It must not be trusted."""
        return self.error.statement

    def unwrap(self) -> Any:
        raise self.error


VerificationResult = Union[VerificationSuccess, VerificationFailure]


class AttestationVerifier:
    """Verifies attestation responses without contacting any server.

    A response is parsed, its signature and certificate chain are verified,
    the signing certificate is bound to the attestation hostname, and finally
    the claims are validated against the caller's :class:`VerificationContext`.

    Instances hold no per-request state and may be shared between threads.

    :param identity_provider: Provides the caller's own application identity.
    :param trust_anchors: Trusted roots, by default the certifi bundle.
    :param chain_validator: Overrides the chain validation entirely.
    :param check_apk_digest: Also require ``apkDigestSha256`` to match.
    :param clock: Returns the time certificates are validated at.
    :param payload_class: Decode target for the payload.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        trust_anchors: Optional[TrustAnchorProvider] = None,
        chain_validator: Optional[ChainValidator] = None,
        check_apk_digest: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
        payload_class: Type[Any] = AttestationStatement,
    ):
        self.signature_verifier = SignatureVerifier(
            chain_validator or X509ChainValidator(trust_anchors, clock)
        )
        self.payload_validator = PayloadValidator(identity_provider, check_apk_digest)
        self.payload_class = payload_class

    def _verify_signed(self, token: str) -> Tuple[JsonWebSignature, x509.Certificate]:
        jws = parse_attestation(token, self.payload_class)
        try:
            certificate = self.signature_verifier.verify(
                jws.header,
                jws.token.signed_content_bytes,
                jws.token.signature_bytes,
            )
        except VerificationError as e:
            if e.statement is None:
                e.statement = jws.payload
            raise
        return jws, certificate

    def _failure(self, error: VerificationError) -> VerificationFailure:
        logger.warning("Attestation verification failed (%s): %s", error.kind.value, error)
        return VerificationFailure(error)

    def verify_token(self, token: str) -> VerificationResult:
        """Verify only the authenticity of a response.

        The statement of a successful result is signed by the attestation
        service, but none of its claims have been checked.
        """
        try:
            jws, certificate = self._verify_signed(token)
        except VerificationError as e:
            return self._failure(e)
        return VerificationSuccess(jws.payload, certificate, jws.header)

    def verify(self, token: str, context: VerificationContext) -> VerificationResult:
        """Fully verify a response to a request made with ``context``.

        :param token: The compact JWS returned by the attestation service.
        :param context: The context of the request, consumed by this call.
        :return: A :class:`VerificationSuccess` or :class:`VerificationFailure`.
        :raises ContextReusedError: If the context was used before.
        """
        context.consume()
        try:
            jws, certificate = self._verify_signed(token)
            self.payload_validator.check(jws.payload, context)
        except VerificationError as e:
            return self._failure(e)
        logger.info(
            "Attestation verified: ctsProfileMatch=%s basicIntegrity=%s",
            getattr(jws.payload, "cts_profile_match", None),
            getattr(jws.payload, "basic_integrity", None),
        )
        return VerificationSuccess(jws.payload, certificate, jws.header)

    def __call__(self, *args):
        """Allows passing an instance where a verification callable is expected."""
        return self.verify(*args)
