"""Attestation routes."""
from __future__ import annotations

import time
from threading import Lock
from typing import Any, Dict, Mapping

from flask import abort, jsonify, request, session

from safetynet_verifier.payload import VerificationContext
from safetynet_verifier.utils import b64_decode, b64_encode

from .config import ConfigurationError, app, get_verifier

_SESSION_KEY = "attest_state"

# Nonces of completed requests, kept until their context would expire anyway.
# Session cookies are held by the client, so popping alone can't stop a replay.
_consumed_lock = Lock()
_consumed_nonces: Dict[str, int] = {}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _claim_nonce(nonce_b64: str, timestamp_ms: int) -> bool:
    """Record a nonce as used, returning ``False`` if it already was."""

    ttl_ms = int(app.config["ATTEST_CONTEXT_TTL_SECONDS"]) * 1000
    now = _now_ms()
    with _consumed_lock:
        for stale in [n for n, ts in _consumed_nonces.items() if now - ts > ttl_ms]:
            del _consumed_nonces[stale]
        if nonce_b64 in _consumed_nonces:
            return False
        _consumed_nonces[nonce_b64] = timestamp_ms
        return True


def _restore_context(state: Any) -> VerificationContext:
    if not isinstance(state, Mapping):
        abort(400)
    try:
        nonce_b64 = state["nonce"]
        timestamp_ms = int(state["timestampMs"])
        nonce = b64_decode(nonce_b64)
    except (KeyError, TypeError, ValueError):
        abort(400)

    ttl_ms = int(app.config["ATTEST_CONTEXT_TTL_SECONDS"]) * 1000
    if _now_ms() - timestamp_ms > ttl_ms:
        app.logger.info("Rejecting expired attestation request state")
        abort(400)
    if not _claim_nonce(nonce_b64, timestamp_ms):
        app.logger.warning("Rejecting reused attestation nonce")
        abort(400)
    return VerificationContext(nonce=nonce, timestamp_ms=timestamp_ms)


@app.route("/api/health", methods=["GET"])
def health():
    return jsonify({"status": "OK"})


@app.route("/api/attest/begin", methods=["POST"])
def attest_begin():
    context = VerificationContext.create()
    state = {"nonce": b64_encode(context.nonce), "timestampMs": context.timestamp_ms}
    session[_SESSION_KEY] = state
    return jsonify(state)


@app.route("/api/attest/complete", methods=["POST"])
def attest_complete():
    # Popped before anything else, the state is good for one attempt only.
    state = session.pop(_SESSION_KEY, None)
    if state is None:
        abort(400)
    context = _restore_context(state)

    data = request.get_json(silent=True)
    token = data.get("jws") if isinstance(data, Mapping) else None
    if not isinstance(token, str) or not token:
        abort(400)

    try:
        verifier = get_verifier()
    except ConfigurationError as exc:
        app.logger.error("Unable to verify attestation: %s", exc)
        abort(503)

    result = verifier.verify(token, context)
    if result.ok:
        return jsonify({"status": "ok", "statement": result.statement.to_dict()})

    statement = result.statement
    return (
        jsonify(
            {
                "status": "failed",
                "kind": result.kind.value,
                "detail": result.detail,
                "statement": statement.to_dict() if statement is not None else None,
            }
        ),
        422,
    )
