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

"""Validation of attestation claims against values known to the caller."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import ContextReusedError, PayloadValidationFailed
from .identity import ApplicationIdentity, IdentityProvider
from .statement import AttestationStatement
from .utils import b64_encode, bytes_eq

logger = logging.getLogger(__name__)

#: Responses generated later than this after the request are considered stale.
MAX_TIMESTAMP_DURATION_MS = 2 * 60 * 1000

NONCE_LENGTH = 32


@dataclass
class VerificationContext:
    """State recorded immediately before issuing an attestation request.

    A context must be used to validate exactly one response.

    :ivar nonce: The one-time nonce sent with the request.
    :ivar timestamp_ms: Wall clock time of the request, in milliseconds since
        the UNIX epoch.
    """

    nonce: bytes
    timestamp_ms: int
    _consumed: bool = field(default=False, init=False, repr=False, compare=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @classmethod
    def create(cls, nonce: Optional[bytes] = None) -> VerificationContext:
        """Generate a fresh nonce and record the current time."""
        if nonce is None:
            nonce = secrets.token_bytes(NONCE_LENGTH)
        return cls(nonce=nonce, timestamp_ms=int(time.time() * 1000))

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> None:
        """Mark the context as used.

        :raises ContextReusedError: If the context was already used.
        """
        with self._lock:
            if self._consumed:
                raise ContextReusedError(
                    "Verification context has already been used for a response"
                )
            self._consumed = True


def _b64(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    return b64_encode(data)


class PayloadValidator:
    """Validates a verified statement against a :class:`VerificationContext`.

    The apk fields are only evaluated when the statement reports
    ``ctsProfileMatch``, as they are not trustworthy otherwise.

    :param identity_provider: Provides the caller's own application identity.
    :param check_apk_digest: Also require ``apkDigestSha256`` to match.
    :param max_duration_ms: Maximum time between request and response.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        check_apk_digest: bool = False,
        max_duration_ms: int = MAX_TIMESTAMP_DURATION_MS,
    ):
        self.identity_provider = identity_provider
        self.check_apk_digest = check_apk_digest
        self.max_duration_ms = max_duration_ms

    def validate(
        self, statement: AttestationStatement, context: VerificationContext
    ) -> AttestationStatement:
        """Validate the statement, consuming the context.

        :return: The statement, unchanged.
        :raises PayloadValidationFailed: On the first mismatch found.
        :raises ContextReusedError: If the context was used before.
        """
        context.consume()
        return self.check(statement, context)

    def check(
        self, statement: AttestationStatement, context: VerificationContext
    ) -> AttestationStatement:
        """Validate the statement against a context consumed by the caller."""
        if statement.nonce is None or not bytes_eq(context.nonce, statement.nonce):
            raise PayloadValidationFailed(
                "nonce mismatch", _b64(context.nonce), statement.nonce_b64, statement
            )

        if statement.timestamp_ms is None:
            raise PayloadValidationFailed(
                "stale response", f"<= {self.max_duration_ms}ms", None, statement
            )
        # Only an upper bound, a response stamped before the request is accepted
        duration = statement.timestamp_ms - context.timestamp_ms
        if duration > self.max_duration_ms:
            raise PayloadValidationFailed(
                "stale response",
                f"<= {self.max_duration_ms}ms",
                f"{duration}ms",
                statement,
            )

        if statement.cts_profile_match is True:
            self._validate_identity(statement, self.identity_provider.get_identity())
        else:
            logger.debug("ctsProfileMatch is not set, skipping apk identity checks")

        return statement

    def _validate_identity(
        self, statement: AttestationStatement, identity: ApplicationIdentity
    ) -> None:
        received_package = statement.apk_package_name
        if (
            received_package is None
            or identity.package_name.lower() != received_package.lower()
        ):
            raise PayloadValidationFailed(
                "package mismatch", identity.package_name, received_package, statement
            )

        received_digests = statement.apk_certificate_digest_sha256
        if received_digests is None or tuple(identity.certificate_digests) != tuple(
            received_digests
        ):
            raise PayloadValidationFailed(
                "cert digest mismatch",
                list(identity.certificate_digests),
                None if received_digests is None else list(received_digests),
                statement,
            )

        if self.check_apk_digest and (
            statement.apk_digest_sha256 is None
            or identity.apk_digest != statement.apk_digest_sha256
        ):
            raise PayloadValidationFailed(
                "apk digest mismatch",
                identity.apk_digest,
                statement.apk_digest_sha256,
                statement,
            )
