import unittest
from unittest import mock

from attest_server import config as server_config
from attest_server import routes
from attest_server.app import app
from safetynet_verifier.utils import b64_decode
from safetynet_verifier.verifier import AttestationVerifier

from .pki import PACKAGE_NAME, get_pki, make_claims, now_ms


class AttestServerTestCase(unittest.TestCase):
    def setUp(self):
        self.pki = get_pki()
        self._saved_config = dict(app.config)
        app.config.update(TESTING=True, ATTEST_VERIFIER=self.pki.verifier())
        routes._consumed_nonces.clear()
        self.client = app.test_client()

    def tearDown(self):
        app.config.clear()
        app.config.update(self._saved_config)

    def _begin(self):
        response = self.client.post("/api/attest/begin")
        self.assertEqual(response.status_code, 200)
        return response.get_json()

    def _token_for(self, state, **overrides):
        claims = make_claims(b64_decode(state["nonce"]), now_ms(), **overrides)
        return self.pki.sign(claims)


class TestRoutes(AttestServerTestCase):
    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.get_json(), {"status": "OK"})

    def test_begin(self):
        state = self._begin()

        self.assertEqual(len(b64_decode(state["nonce"])), 32)
        self.assertLessEqual(state["timestampMs"], now_ms())
        with self.client.session_transaction() as sess:
            self.assertEqual(sess["attest_state"], state)

    def test_complete(self):
        state = self._begin()
        response = self.client.post(
            "/api/attest/complete", json={"jws": self._token_for(state)}
        )

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["statement"]["nonce"], state["nonce"])
        self.assertEqual(body["statement"]["apkPackageName"], PACKAGE_NAME)

    def test_complete_without_begin(self):
        response = self.client.post(
            "/api/attest/complete", json={"jws": "a.b.c"}
        )
        self.assertEqual(response.status_code, 400)

    def test_context_is_single_use(self):
        state = self._begin()
        token = self._token_for(state)

        first = self.client.post("/api/attest/complete", json={"jws": token})
        second = self.client.post("/api/attest/complete", json={"jws": token})

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 400)

    def test_replayed_session_state_is_rejected(self):
        state = self._begin()
        token = self._token_for(state)
        self.client.post("/api/attest/complete", json={"jws": token})

        with self.client.session_transaction() as sess:
            sess["attest_state"] = state
        response = self.client.post("/api/attest/complete", json={"jws": token})

        self.assertEqual(response.status_code, 400)

    def test_expired_state(self):
        state = self._begin()
        with self.client.session_transaction() as sess:
            sess["attest_state"] = dict(
                state, timestampMs=now_ms() - 3600 * 1000
            )
        response = self.client.post(
            "/api/attest/complete", json={"jws": self._token_for(state)}
        )
        self.assertEqual(response.status_code, 400)

    def test_invalid_state(self):
        self._begin()
        with self.client.session_transaction() as sess:
            sess["attest_state"] = {"nonce": "!!", "timestampMs": "soon"}
        response = self.client.post("/api/attest/complete", json={"jws": "a.b.c"})
        self.assertEqual(response.status_code, 400)

    def test_missing_token(self):
        self._begin()
        response = self.client.post("/api/attest/complete", json={})
        self.assertEqual(response.status_code, 400)

    def test_verification_failure(self):
        state = self._begin()
        token = self._token_for(state, apkPackageName="com.other")
        response = self.client.post("/api/attest/complete", json={"jws": token})

        self.assertEqual(response.status_code, 422)
        body = response.get_json()
        self.assertEqual(body["status"], "failed")
        self.assertEqual(body["kind"], "PayloadValidationFailed")
        self.assertIn("package mismatch", body["detail"])
        self.assertEqual(body["statement"]["apkPackageName"], "com.other")

    def test_malformed_token(self):
        self._begin()
        response = self.client.post("/api/attest/complete", json={"jws": "a.b"})

        self.assertEqual(response.status_code, 422)
        body = response.get_json()
        self.assertEqual(body["kind"], "MalformedToken")
        self.assertIsNone(body["statement"])

    def test_not_configured(self):
        app.config.update(ATTEST_VERIFIER=None, ATTEST_PACKAGE_NAME=None)
        self._begin()
        response = self.client.post("/api/attest/complete", json={"jws": "a.b.c"})
        self.assertEqual(response.status_code, 503)


class TestConfig(AttestServerTestCase):
    def test_parse_list(self):
        self.assertEqual(
            server_config._parse_list("a, b;c\n\n d ,"), ("a", "b", "c", "d")
        )
        self.assertEqual(server_config._parse_list(None), ())
        self.assertEqual(server_config._parse_list(" , "), ())

    def test_env_flag(self):
        with mock.patch.dict("os.environ", {"X_FLAG": "off"}):
            self.assertIs(server_config._env_flag("X_FLAG"), False)
        with mock.patch.dict("os.environ", {"X_FLAG": "1"}):
            self.assertIs(server_config._env_flag("X_FLAG"), True)
        with mock.patch.dict("os.environ", {}, clear=True):
            self.assertIsNone(server_config._env_flag("X_FLAG"))

    def test_build_verifier(self):
        app.config.update(
            ATTEST_PACKAGE_NAME="com.example",
            ATTEST_CERT_DIGESTS=("AAAA",),
            ATTEST_APK_DIGEST="BBBB",
            ATTEST_CHECK_APK_DIGEST=True,
            ATTEST_TRUST_BUNDLE=None,
        )
        verifier = server_config.build_verifier()

        self.assertIsInstance(verifier, AttestationVerifier)
        validator = verifier.payload_validator
        self.assertTrue(validator.check_apk_digest)
        identity = validator.identity_provider.get_identity()
        self.assertEqual(identity.package_name, "com.example")
        self.assertEqual(identity.certificate_digests, ("AAAA",))

    def test_build_verifier_requires_package(self):
        app.config.update(ATTEST_PACKAGE_NAME=None)
        with self.assertRaises(server_config.ConfigurationError):
            server_config.build_verifier()

    def test_get_verifier_is_cached(self):
        app.config.update(ATTEST_VERIFIER=None, ATTEST_PACKAGE_NAME="com.example")
        verifier = server_config.get_verifier()
        self.assertIs(server_config.get_verifier(), verifier)
