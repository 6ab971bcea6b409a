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

"""Offline verification of SafetyNet attestation responses."""

from __future__ import annotations

from .exceptions import (
    ChainNotTrusted,
    ContextReusedError,
    FailureKind,
    InvalidCertificateEncoding,
    IssuerHostnameMismatch,
    MalformedToken,
    MissingCertificateChain,
    PayloadValidationFailed,
    SignatureInvalid,
    TokenSourceError,
    UnsupportedAlgorithm,
    VerificationError,
)
from .hostname import ATTESTATION_HOSTNAME
from .identity import (
    ApkIdentityProvider,
    ApplicationIdentity,
    IdentityProvider,
    StaticIdentityProvider,
)
from .jws import SUPPORTED_ALGORITHM
from .payload import MAX_TIMESTAMP_DURATION_MS, VerificationContext
from .statement import AttestationStatement
from .trust import (
    CertifiTrustStore,
    PemBundleTrustStore,
    StaticTrustStore,
    TrustAnchorProvider,
)
from .verifier import (
    AttestationVerifier,
    VerificationFailure,
    VerificationResult,
    VerificationSuccess,
)

__version__ = "1.0.0"

__all__ = [
    "ATTESTATION_HOSTNAME",
    "MAX_TIMESTAMP_DURATION_MS",
    "SUPPORTED_ALGORITHM",
    "ApkIdentityProvider",
    "ApplicationIdentity",
    "AttestationStatement",
    "AttestationVerifier",
    "CertifiTrustStore",
    "ChainNotTrusted",
    "ContextReusedError",
    "FailureKind",
    "IdentityProvider",
    "InvalidCertificateEncoding",
    "IssuerHostnameMismatch",
    "MalformedToken",
    "MissingCertificateChain",
    "PayloadValidationFailed",
    "PemBundleTrustStore",
    "SignatureInvalid",
    "StaticIdentityProvider",
    "StaticTrustStore",
    "TokenSourceError",
    "TrustAnchorProvider",
    "UnsupportedAlgorithm",
    "VerificationContext",
    "VerificationError",
    "VerificationFailure",
    "VerificationResult",
    "VerificationSuccess",
]
