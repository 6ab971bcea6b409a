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

from __future__ import annotations

from enum import Enum, unique
from functools import wraps
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:  # pragma: no cover - import only for static analysis.
    from .statement import AttestationStatement


@unique
class FailureKind(Enum):
    """Kinds of verification failure reported to the caller."""

    MALFORMED_TOKEN = "MalformedToken"
    UNSUPPORTED_ALGORITHM = "UnsupportedAlgorithm"
    MISSING_CERTIFICATE_CHAIN = "MissingCertificateChain"
    INVALID_CERTIFICATE_ENCODING = "InvalidCertificateEncoding"
    CHAIN_NOT_TRUSTED = "ChainNotTrusted"
    SIGNATURE_INVALID = "SignatureInvalid"
    ISSUER_HOSTNAME_MISMATCH = "IssuerHostnameMismatch"
    PAYLOAD_VALIDATION_FAILED = "PayloadValidationFailed"


class VerificationError(Exception):
    """Base exception for attestation verification errors.

    :ivar kind: The :class:`FailureKind` of this error.
    :ivar statement: The decoded statement, when one was available. It is
        attached for inspection only and must not be trusted.
    """

    kind: FailureKind = FailureKind.MALFORMED_TOKEN

    def __init__(
        self, message: str = "", statement: Optional[AttestationStatement] = None
    ):
        super().__init__(message or self.__class__.__doc__)
        self.statement = statement

    @property
    def detail(self) -> str:
        return str(self)


class MalformedToken(VerificationError):
    """The token is not a well formed compact JWS."""

    kind = FailureKind.MALFORMED_TOKEN


class UnsupportedAlgorithm(VerificationError):
    """The token is signed with an algorithm that is not supported."""

    kind = FailureKind.UNSUPPORTED_ALGORITHM

    def __init__(self, algorithm: Any, statement=None):
        super().__init__(f'Unsupported signature algorithm "{algorithm}"', statement)
        self.algorithm = algorithm


class MissingCertificateChain(VerificationError):
    """No certificates found in header."""

    kind = FailureKind.MISSING_CERTIFICATE_CHAIN


class InvalidCertificateEncoding(VerificationError):
    """A certificate in the chain could not be decoded."""

    kind = FailureKind.INVALID_CERTIFICATE_ENCODING


class ChainNotTrusted(VerificationError):
    """The certificate chain does not lead to a trusted root."""

    kind = FailureKind.CHAIN_NOT_TRUSTED


class SignatureInvalid(VerificationError):
    """The signature of the token could not be verified."""

    kind = FailureKind.SIGNATURE_INVALID


class IssuerHostnameMismatch(VerificationError):
    """The signing certificate isn't issued for the attestation hostname."""

    kind = FailureKind.ISSUER_HOSTNAME_MISMATCH


class PayloadValidationFailed(VerificationError):
    """The attestation statement does not match the local expectations."""

    kind = FailureKind.PAYLOAD_VALIDATION_FAILED

    def __init__(
        self,
        reason: str,
        expected: Any = None,
        received: Any = None,
        statement=None,
    ):
        super().__init__(
            f"{reason}, expected: {expected}, received: {received}", statement
        )
        self.reason = reason
        self.expected = expected
        self.received = received


class TokenSourceError(Exception):
    """Raised when a token could not be obtained from the attestation service.

    This is not a :class:`VerificationError`: nothing was verified.
    """


class ContextReusedError(ValueError):
    """A verification context was used for more than one response."""


def catch_builtins(f):
    """Utility decorator to wrap common exceptions related to MalformedToken."""

    @wraps(f)
    def inner(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (ValueError, KeyError, IndexError, TypeError, RecursionError) as e:
            raise MalformedToken(str(e)) from e

    return inner
