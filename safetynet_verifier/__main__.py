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

"""Verify an attestation response from the command line."""

from __future__ import annotations

import argparse
import binascii
import json
import logging
import sys
from typing import List, NoReturn, Optional

from .identity import StaticIdentityProvider
from .payload import VerificationContext
from .trust import PemBundleTrustStore
from .utils import b64_decode, websafe_decode
from .verifier import AttestationVerifier

logger = logging.getLogger("safetynet_verifier")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )


def _decode_nonce(value: str) -> bytes:
    try:
        return b64_decode(value)
    except ValueError:
        pass
    try:
        return websafe_decode(value)
    except (ValueError, binascii.Error):
        raise argparse.ArgumentTypeError(f"invalid base64 nonce: {value!r}")


def _read_token(value: str) -> str:
    if value == "-":
        return sys.stdin.read().strip()
    return value.strip()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m safetynet_verifier",
        description="Verify a SafetyNet attestation response offline.",
    )
    parser.add_argument("token", help="the compact JWS, or - to read from stdin")
    parser.add_argument(
        "--nonce", type=_decode_nonce, required=True, help="base64 request nonce"
    )
    parser.add_argument(
        "--request-time-ms",
        type=int,
        required=True,
        help="time of the request, in milliseconds since the epoch",
    )
    parser.add_argument("--package", required=True, help="expected package name")
    parser.add_argument(
        "--cert-digest",
        action="append",
        default=[],
        help="expected base64 SHA-256 signing certificate digest (repeatable)",
    )
    parser.add_argument("--apk-digest", help="expected base64 SHA-256 APK digest")
    parser.add_argument(
        "--check-apk-digest",
        action="store_true",
        help="require apkDigestSha256 to match --apk-digest",
    )
    parser.add_argument(
        "--trust-bundle", help="PEM file of trusted roots (default: certifi)"
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point, returns the process exit status."""

    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return 2 if exc.code else 0

    _configure_logging(args.verbose)

    if args.check_apk_digest and not args.apk_digest:
        logger.error("--check-apk-digest requires --apk-digest")
        return 2

    verifier = AttestationVerifier(
        StaticIdentityProvider(args.package, args.cert_digest, args.apk_digest),
        trust_anchors=PemBundleTrustStore(args.trust_bundle)
        if args.trust_bundle
        else None,
        check_apk_digest=args.check_apk_digest,
    )
    context = VerificationContext(nonce=args.nonce, timestamp_ms=args.request_time_ms)

    try:
        result = verifier.verify(_read_token(args.token), context)
    except OSError as exc:
        logger.error("Unable to read trust bundle: %s", exc)
        return 2

    if not result.ok:
        logger.error("Verification failed (%s): %s", result.kind.value, result.detail)
        return 1

    print(json.dumps(result.statement.to_dict(), indent=2, sort_keys=True))
    return 0


def run() -> NoReturn:
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover - CLI execution
    run()
