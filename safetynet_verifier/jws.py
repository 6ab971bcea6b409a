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

"""JSON Web Signature compact serialization.

See RFC 7515. Only the parts needed to verify an attestation response are
implemented: splitting and decoding the three segments, decoding the
protected header and a registry of signature algorithms.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa, types

from .exceptions import MalformedToken, UnsupportedAlgorithm, catch_builtins
from .utils import (
    _JsonDataObject,
    json_any,
    json_field,
    json_str,
    json_str_list,
    websafe_decode,
    websafe_encode,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompactToken:
    """The raw segments of a compact serialized JWS.

    :ivar signed_content_bytes: The exact bytes the signature was computed
        over: the first two segments joined by their dot, as they appeared in
        the token. They are never re-encoded.
    """

    header_segment: str
    payload_segment: str
    signature_segment: str
    header_bytes: bytes
    payload_bytes: bytes
    signature_bytes: bytes
    signed_content_bytes: bytes

    def __repr__(self):
        return (
            f"CompactToken(header={self.header_segment!r}, "
            f"payload={self.payload_segment!r}, "
            f"signature=<{len(self.signature_bytes)} bytes>)"
        )


def _decode_segment(segment: str, name: str) -> bytes:
    try:
        return websafe_decode(segment)
    except ValueError as e:
        raise MalformedToken(f"Invalid base64url encoding in {name} segment") from e


def parse_compact(token: Union[str, bytes]) -> CompactToken:
    """Split a compact JWS into its decoded segments.

    :param token: The ``header.payload.signature`` string.
    :return: The decoded :class:`CompactToken`.
    :raises MalformedToken: If the token does not have exactly three segments
        or a segment is not unpadded base64url.
    """
    if isinstance(token, bytes):
        try:
            token = token.decode("ascii")
        except UnicodeDecodeError as e:
            raise MalformedToken("Token is not ASCII") from e
    if not isinstance(token, str):
        raise MalformedToken(f"Token must be a string, not {type(token).__name__}")

    first_dot = token.find(".")
    if first_dot == -1:
        raise MalformedToken("Token has no segment separator")
    second_dot = token.find(".", first_dot + 1)
    if second_dot == -1:
        raise MalformedToken("Token has only two segments")
    if token.find(".", second_dot + 1) != -1:
        raise MalformedToken("Token has more than three segments")

    header_segment = token[:first_dot]
    payload_segment = token[first_dot + 1 : second_dot]
    signature_segment = token[second_dot + 1 :]

    header_bytes = _decode_segment(header_segment, "header")
    payload_bytes = _decode_segment(payload_segment, "payload")
    signature_bytes = _decode_segment(signature_segment, "signature")
    if not signature_bytes:
        raise MalformedToken("Token has an empty signature")

    # The segments are pure base64url at this point, so this is plain ASCII.
    signed_content_bytes = token[:second_dot].encode("ascii")

    return CompactToken(
        header_segment=header_segment,
        payload_segment=payload_segment,
        signature_segment=signature_segment,
        header_bytes=header_bytes,
        payload_bytes=payload_bytes,
        signature_bytes=signature_bytes,
        signed_content_bytes=signed_content_bytes,
    )


@dataclass(frozen=True)
class JwsHeader(_JsonDataObject):
    """JOSE header of a JWS.

    Only ``alg`` and ``x5c`` are acted upon. The remaining registered header
    parameters are decoded and kept so that callers can inspect them.
    """

    alg: Optional[str] = json_field("alg", json_str)
    jku: Optional[str] = json_field("jku", json_str)
    jwk: Any = json_field("jwk", json_any)
    kid: Optional[str] = json_field("kid", json_str)
    x5u: Optional[str] = json_field("x5u", json_str)
    x5t: Optional[str] = json_field("x5t", json_str)
    x5c: Optional[Tuple[str, ...]] = json_field("x5c", json_str_list)
    crit: Optional[Tuple[str, ...]] = json_field("crit", json_str_list)
    typ: Optional[str] = json_field("typ", json_str)
    cty: Optional[str] = json_field("cty", json_str)

    @property
    def certificate_chain(self) -> Sequence[str]:
        """The base64 DER certificates of the x5c parameter, leaf first."""
        return self.x5c or ()


T = TypeVar("T")


@catch_builtins
def decode_json_segment(data: bytes, target: Type[T]) -> T:
    """Decode a JSON segment into an instance of ``target``.

    ``target`` must provide a ``from_dict`` classmethod.
    """
    return target.from_dict(json.loads(data.decode("utf-8")))  # type: ignore


def decode_header(header_bytes: bytes, target: Type[JwsHeader] = JwsHeader) -> JwsHeader:
    """Decode the protected header of a JWS.

    :raises MalformedToken: If the header is not a JSON object or has no
        ``alg`` parameter.
    """
    header = decode_json_segment(header_bytes, target)
    if header.alg is None:
        raise MalformedToken('Header is missing the "alg" parameter')
    return header


class JwsAlgorithm:
    """A JWS signature algorithm bound to a public key.

    :cvar NAME: The JWS ``alg`` identifier.
    """

    NAME: str = None  # type: ignore

    def __init__(self, public_key: types.PublicKeyTypes):
        self.public_key = public_key

    def verify(self, message: bytes, signature: bytes) -> None:
        """Validates a digital signature over a given message.

        :param message: The message which was signed.
        :param signature: The signature to check.
        :raises cryptography.exceptions.InvalidSignature: On mismatch.
        """
        raise NotImplementedError("Signature verification not supported.")

    @classmethod
    def sign(cls, private_key: Any, message: bytes) -> bytes:
        """Creates a signature over ``message``, used to build tokens."""
        raise NotImplementedError("Signing not supported.")

    @staticmethod
    def for_name(name: Optional[str]) -> Type[JwsAlgorithm]:
        """Get the subclass of JwsAlgorithm for an ``alg`` identifier.

        :raises UnsupportedAlgorithm: If no such algorithm is implemented.
        """
        for cls in JwsAlgorithm.__subclasses__():
            if cls.NAME is not None and cls.NAME == name:
                return cls
        raise UnsupportedAlgorithm(name)

    @staticmethod
    def supported_algorithms() -> Sequence[str]:
        """Get a list of all supported algorithm identifiers"""
        return [cls.NAME for cls in JwsAlgorithm.__subclasses__() if cls.NAME]


class RS256(JwsAlgorithm):
    """RSASSA-PKCS1-v1_5 using SHA-256."""

    NAME = "RS256"
    _HASH_ALG = hashes.SHA256()

    def verify(self, message, signature):
        if not isinstance(self.public_key, rsa.RSAPublicKey):
            raise InvalidSignature(
                f"{self.NAME} requires an RSA key, not {type(self.public_key).__name__}"
            )
        self.public_key.verify(signature, message, padding.PKCS1v15(), self._HASH_ALG)

    @classmethod
    def sign(cls, private_key, message):
        assert isinstance(private_key, rsa.RSAPrivateKey)  # nosec
        return private_key.sign(message, padding.PKCS1v15(), cls._HASH_ALG)


SUPPORTED_ALGORITHM = RS256.NAME


def _json_segment(value: Union[Mapping[str, Any], bytes]) -> str:
    if isinstance(value, (bytes, bytearray)):
        return websafe_encode(bytes(value))
    return websafe_encode(
        json.dumps(value, separators=(",", ":")).encode("utf-8")
    )


def encode_compact(
    header: Union[Mapping[str, Any], bytes],
    payload: Union[Mapping[str, Any], bytes],
    private_key: Any,
) -> str:
    """Serialize and sign a JWS in compact form.

    :param header: The header, either as a mapping or raw JSON bytes. Its
        ``alg`` selects the signature algorithm.
    :param payload: The payload, either as a mapping or raw JSON bytes.
    :param private_key: A private key suitable for the algorithm.
    :return: The ``header.payload.signature`` string.
    """
    header_segment = _json_segment(header)
    alg = (
        json.loads(header)["alg"]
        if isinstance(header, (bytes, bytearray))
        else header["alg"]
    )
    signing_input = f"{header_segment}.{_json_segment(payload)}"
    signature = JwsAlgorithm.for_name(alg).sign(
        private_key, signing_input.encode("ascii")
    )
    return f"{signing_input}.{websafe_encode(signature)}"


@dataclass(frozen=True)
class JsonWebSignature:
    """A parsed JWS: raw token, decoded header and decoded payload."""

    token: CompactToken
    header: JwsHeader
    payload: Any


def parse(
    token: Union[str, bytes],
    payload_class: Type[T],
    header_class: Type[JwsHeader] = JwsHeader,
) -> JsonWebSignature:
    """Parse and decode a compact JWS, without verifying it.

    :param token: The compact serialized token.
    :param payload_class: The decode target of the payload, a class with a
        ``from_dict`` classmethod.
    :param header_class: The decode target of the header.
    :raises MalformedToken: If the token cannot be parsed or decoded.
    """
    compact = parse_compact(token)
    header = decode_header(compact.header_bytes, header_class)
    payload = decode_json_segment(compact.payload_bytes, payload_class)
    logger.debug(
        "Parsed JWS with alg=%s and %d certificates",
        header.alg,
        len(header.certificate_chain),
    )
    return JsonWebSignature(token=compact, header=header, payload=payload)
