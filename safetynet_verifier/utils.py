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

"""Various utility functions used throughout the package."""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Type, TypeVar

_WEBSAFE_RE = re.compile(r"[A-Za-z0-9_-]*")
_BASE64_RE = re.compile(r"[A-Za-z0-9+/]*={0,2}")


def sha256(data: bytes) -> bytes:
    """Produces a SHA256 hash of the input.

    :param data: The input data to hash.
    :return: The resulting hash.
    """
    return hashlib.sha256(data).digest()


def bytes_eq(a: bytes, b: bytes) -> bool:
    """Constant time comparison of two byte strings."""
    return hmac.compare_digest(a, b)


def websafe_encode(data: bytes) -> str:
    """Encodes a byte string into websafe-base64 encoding, without padding.

    :param data: The input to encode.
    :return: The encoded string.
    """
    return base64.urlsafe_b64encode(data).replace(b"=", b"").decode("ascii")


def websafe_decode(data: str) -> bytes:
    """Decodes a websafe-base64 encoded string.

    Unlike the lenient decoders in the standard library, padding, characters
    outside of the URL-safe alphabet and non-zero trailing bits are rejected,
    so each byte string has exactly one accepted encoding.

    :param data: The input to decode.
    :return: The decoded bytes.
    """
    if isinstance(data, bytes):
        data = data.decode("ascii")
    if not _WEBSAFE_RE.fullmatch(data):
        raise ValueError("Invalid character in base64url data")
    if len(data) % 4 == 1:
        raise ValueError("Invalid base64url length")
    decoded = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    if websafe_encode(decoded) != data:
        raise ValueError("Non-canonical base64url data")
    return decoded


def b64_encode(data: bytes) -> str:
    """Encodes a byte string using standard base64, with padding."""
    return base64.b64encode(data).decode("ascii")


def b64_decode(data: str) -> bytes:
    """Decodes a standard base64 string, as used by x5c and the digest claims."""
    if not isinstance(data, str) or not _BASE64_RE.fullmatch(data):
        raise ValueError("Invalid base64 data")
    return base64.b64decode(data + "=" * (-len(data) % 4), validate=True)


# Field (de)serializers for _JsonDataObject. Wrong JSON types raise TypeError.


def _expect(value: Any, types: Tuple[type, ...], what: str) -> Any:
    # bool is a subclass of int, never accept it where a number is expected
    if isinstance(value, bool) and bool not in types:
        raise TypeError(f"Expected {what}, got {type(value).__name__}")
    if not isinstance(value, types):
        raise TypeError(f"Expected {what}, got {type(value).__name__}")
    return value


def json_str(value: Any) -> str:
    return _expect(value, (str,), "string")


def json_int(value: Any) -> int:
    return _expect(value, (int,), "integer")


def json_bool(value: Any) -> bool:
    return _expect(value, (bool,), "boolean")


def json_str_list(value: Any) -> Tuple[str, ...]:
    _expect(value, (list,), "array")
    return tuple(json_str(item) for item in value)


def json_any(value: Any) -> Any:
    return value


T_JsonDataObject = TypeVar("T_JsonDataObject", bound="_JsonDataObject")


def json_field(
    name: str,
    deserialize: Callable[[Any], Any] = json_any,
    serialize: Optional[Callable[[Any], Any]] = None,
) -> Any:
    """Declare a dataclass field bound to a JSON member.

    Fields default to ``None`` so that an absent member stays distinguishable
    from a false or empty one.
    """
    return field(
        default=None,
        metadata=dict(name=name, deserialize=deserialize, serialize=serialize),
    )


@dataclass(frozen=True)
class _JsonDataObject:
    """Base class for records decoded from a JSON object.

    Members without a matching field are kept in ``extensions`` so that newer
    claims survive decoding. JSON ``null`` is treated as absent.
    """

    extensions: Mapping[str, Any] = field(
        default_factory=dict, repr=False, compare=False
    )

    @classmethod
    def _json_fields(cls) -> Dict[str, Any]:
        return {
            f.metadata["name"]: f for f in fields(cls) if "name" in f.metadata
        }

    @classmethod
    def from_dict(
        cls: Type[T_JsonDataObject], data: Mapping[str, Any]
    ) -> T_JsonDataObject:
        if not isinstance(data, Mapping):
            raise TypeError(
                f"{cls.__name__} must be a JSON object, not {type(data).__name__}"
            )
        known = cls._json_fields()
        kwargs: Dict[str, Any] = {}
        extensions: Dict[str, Any] = {}
        for key, value in data.items():
            f = known.get(key)
            if f is None:
                extensions[key] = value
            elif value is not None:
                try:
                    kwargs[f.name] = f.metadata["deserialize"](value)
                except TypeError as e:
                    raise TypeError(f'Invalid value for "{key}": {e}') from e
        return cls(extensions=MappingProxyType(extensions), **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON shape of the object, omitting absent members."""
        data: Dict[str, Any] = dict(self.extensions)
        for name, f in self._json_fields().items():
            value = getattr(self, f.name)
            if value is None:
                continue
            serialize = f.metadata["serialize"]
            if serialize is not None:
                value = serialize(value)
            elif isinstance(value, tuple):
                value = list(value)
            data[name] = value
        return data


def as_sequence(value: Any) -> Sequence[Any]:
    """Return ``value`` as a sequence, wrapping a single item in a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return value
    return [value]
