"""Configuration and application setup for the attestation verification server."""
from __future__ import annotations

import os
import re
from threading import Lock
from typing import Optional, Tuple

from flask import Flask

from safetynet_verifier.identity import StaticIdentityProvider
from safetynet_verifier.trust import PemBundleTrustStore
from safetynet_verifier.verifier import AttestationVerifier

app = Flask(__name__)
app.secret_key = os.environ.get("ATTEST_SERVER_SECRET_KEY") or os.urandom(32)


def _env_flag(name: str) -> Optional[bool]:
    """Return ``True`` or ``False`` when the named env var is explicitly set."""

    raw_value = os.environ.get(name)
    if raw_value is None:
        return None

    normalised = raw_value.strip().lower()
    if normalised in {"", "0", "false", "off", "no"}:
        return False
    return True


def _parse_list(raw_value: Optional[str]) -> Tuple[str, ...]:
    """Split a comma, semicolon or newline separated list, keeping its order."""

    if raw_value is None:
        return ()

    components = re.split(r"[,;\n]+", raw_value)
    return tuple(component.strip() for component in components if component.strip())


def _env_int(name: str, default: int) -> int:
    raw_value = os.environ.get(name)
    if raw_value is None or not raw_value.strip():
        return default
    return int(raw_value.strip())


app.config.setdefault(
    "ATTEST_PACKAGE_NAME", os.environ.get("ATTEST_SERVER_PACKAGE_NAME")
)
app.config.setdefault(
    "ATTEST_CERT_DIGESTS", _parse_list(os.environ.get("ATTEST_SERVER_CERT_DIGESTS"))
)
app.config.setdefault("ATTEST_APK_DIGEST", os.environ.get("ATTEST_SERVER_APK_DIGEST"))
app.config.setdefault(
    "ATTEST_CHECK_APK_DIGEST", bool(_env_flag("ATTEST_SERVER_CHECK_APK_DIGEST"))
)
app.config.setdefault("ATTEST_TRUST_BUNDLE", os.environ.get("ATTEST_SERVER_TRUST_BUNDLE"))
app.config.setdefault(
    "ATTEST_CONTEXT_TTL_SECONDS", _env_int("ATTEST_SERVER_CONTEXT_TTL_SECONDS", 300)
)

_verifier_lock = Lock()


class ConfigurationError(RuntimeError):
    """The server is missing configuration needed to verify responses."""


def build_verifier() -> AttestationVerifier:
    """Create an :class:`AttestationVerifier` from the application config."""

    package_name = app.config.get("ATTEST_PACKAGE_NAME")
    if not package_name:
        raise ConfigurationError("ATTEST_SERVER_PACKAGE_NAME is not configured")

    trust_bundle = app.config.get("ATTEST_TRUST_BUNDLE")
    return AttestationVerifier(
        StaticIdentityProvider(
            package_name,
            app.config.get("ATTEST_CERT_DIGESTS") or (),
            app.config.get("ATTEST_APK_DIGEST"),
        ),
        trust_anchors=PemBundleTrustStore(trust_bundle) if trust_bundle else None,
        check_apk_digest=bool(app.config.get("ATTEST_CHECK_APK_DIGEST")),
    )


def get_verifier() -> AttestationVerifier:
    """Return the shared verifier, building it on first use."""

    with _verifier_lock:
        verifier = app.config.get("ATTEST_VERIFIER")
        if verifier is None:
            verifier = build_verifier()
            app.config["ATTEST_VERIFIER"] = verifier
            app.logger.info(
                "Attestation verifier ready for package %s",
                app.config.get("ATTEST_PACKAGE_NAME"),
            )
        return verifier
