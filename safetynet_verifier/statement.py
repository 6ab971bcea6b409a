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

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Type, Union

from .jws import JsonWebSignature, decode_json_segment, parse
from .utils import (
    _JsonDataObject,
    as_sequence,
    b64_decode,
    b64_encode,
    json_any,
    json_bool,
    json_field,
    json_int,
    json_str,
    json_str_list,
)


@dataclass(frozen=True)
class JwtClaims(_JsonDataObject):
    """Registered JWT claims (RFC 7519), all optional."""

    exp: Optional[int] = json_field("exp", json_int)
    nbf: Optional[int] = json_field("nbf", json_int)
    iat: Optional[int] = json_field("iat", json_int)
    iss: Optional[str] = json_field("iss", json_str)
    aud: Any = json_field("aud", json_any)
    jti: Optional[str] = json_field("jti", json_str)
    typ: Optional[str] = json_field("typ", json_str)
    sub: Optional[str] = json_field("sub", json_str)

    @property
    def audience_list(self) -> List[str]:
        """The audience claim as a list, empty when absent."""
        return list(as_sequence(self.aud))


@dataclass(frozen=True)
class AttestationStatement(JwtClaims):
    """A statement returned by the Attestation API.

    The apk fields are absent when the service could not reliably determine
    them, and should only be trusted when ``cts_profile_match`` is True.

    :ivar nonce: Embedded nonce sent as part of the request.
    :ivar timestamp_ms: Milliseconds past the UNIX epoch when the response was
        generated by the service.
    :ivar apk_package_name: Package name of the calling app.
    :ivar apk_certificate_digest_sha256: Base64 SHA-256 digests of the
        certificates used to sign the calling app, in order.
    :ivar apk_digest_sha256: Base64 SHA-256 digest of the calling app's APK.
    :ivar cts_profile_match: The device passed CTS and matches a known profile.
    :ivar basic_integrity: The device passed a basic integrity test, but the
        CTS profile could not be verified.
    :ivar advice: Suggestion for how to get a device back into a good state.
    """

    nonce: Optional[bytes] = json_field("nonce", b64_decode, b64_encode)
    timestamp_ms: Optional[int] = json_field("timestampMs", json_int)
    apk_package_name: Optional[str] = json_field("apkPackageName", json_str)
    apk_certificate_digest_sha256: Optional[Tuple[str, ...]] = json_field(
        "apkCertificateDigestSha256", json_str_list
    )
    apk_digest_sha256: Optional[str] = json_field("apkDigestSha256", json_str)
    cts_profile_match: Optional[bool] = json_field("ctsProfileMatch", json_bool)
    basic_integrity: Optional[bool] = json_field("basicIntegrity", json_bool)
    advice: Optional[str] = json_field("advice", json_str)

    @property
    def nonce_b64(self) -> Optional[str]:
        if self.nonce is None:
            return None
        return b64_encode(self.nonce)


def decode_payload(
    payload_bytes: bytes, target: Type[Any] = AttestationStatement
) -> Any:
    """Decode the payload segment of an attestation response.

    No semantic validation happens here.

    :param payload_bytes: The decoded payload segment.
    :param target: Decode target with a ``from_dict`` classmethod.
    :raises MalformedToken: If the payload is not a valid statement.
    """
    return decode_json_segment(payload_bytes, target)


def parse_attestation(
    token: Union[str, bytes], target: Type[Any] = AttestationStatement
) -> JsonWebSignature:
    """Parse an attestation response into header and statement, unverified."""
    return parse(token, target)
