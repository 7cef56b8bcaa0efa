"""Auth adapter and configuration tests."""

from __future__ import annotations

import os
import sys
import types
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from pydantic import ValidationError

from recolor.adapters.auth import AuthVerificationError, FirebaseTokenVerifier, MockTokenVerifier
from recolor.adapters.gateway import MockPaymentGateway, PhonePeGateway
from recolor.core.config import Settings
from recolor.main import create_app
from recolor.routes.dependencies import build_payment_gateway, get_token_verifier


class _SettingsEnvCase(unittest.TestCase):
    _env_keys = (
        "RECOLOR_AUTH_PROVIDER",
        "RECOLOR_PAYMENT_GATEWAY",
        "RECOLOR_PHONEPE_CLIENT_ID",
        "RECOLOR_PHONEPE_CLIENT_SECRET",
        "RECOLOR_SINGLE_IMAGE_PRICE_PAISE",
        "RECOLOR_ADMIN_REPAIR_KEY",
    )

    def setUp(self) -> None:
        self._old_env = {k: os.environ.get(k) for k in self._env_keys}
        for key in self._env_keys:
            os.environ.pop(key, None)

    def tearDown(self) -> None:
        for key, value in self._old_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


class SettingsTests(_SettingsEnvCase):
    def test_settings_load_from_prefixed_environment(self) -> None:
        os.environ["RECOLOR_AUTH_PROVIDER"] = "mock"
        os.environ["RECOLOR_PAYMENT_GATEWAY"] = "mock"
        os.environ["RECOLOR_SINGLE_IMAGE_PRICE_PAISE"] = "9900"
        os.environ["RECOLOR_ADMIN_REPAIR_KEY"] = "env-admin-key"

        settings = Settings()

        self.assertEqual(settings.auth_provider, "mock")
        self.assertEqual(settings.single_image_price_paise, 9900)
        self.assertEqual(settings.currency, "INR")
        self.assertEqual(settings.order_expiry_seconds, 3600)
        self.assertEqual(settings.admin_repair_key, "env-admin-key")

    def test_settings_are_immutable(self) -> None:
        settings = Settings(payment_gateway="mock")

        with self.assertRaises(ValidationError):
            settings.currency = "USD"

    def test_phonepe_gateway_requires_credentials(self) -> None:
        with self.assertRaises(ValidationError):
            Settings(payment_gateway="phonepe")

    def test_order_expiry_bounds_are_enforced(self) -> None:
        for expiry in (299, 3601):
            with self.subTest(expiry=expiry):
                with self.assertRaises(ValidationError):
                    Settings(payment_gateway="mock", order_expiry_seconds=expiry)

    def test_gateway_is_selected_from_settings(self) -> None:
        self.assertIsInstance(build_payment_gateway(Settings(payment_gateway="mock")), MockPaymentGateway)

        gateway = build_payment_gateway(
            Settings(payment_gateway="phonepe", phonepe_client_id="id", phonepe_client_secret="secret")
        )
        self.assertIsInstance(gateway, PhonePeGateway)
        gateway.close()

    def test_create_app_exposes_injected_state(self) -> None:
        settings = Settings(auth_provider="mock", payment_gateway="mock")
        gateway = MockPaymentGateway()

        app = create_app(settings, gateway=gateway)
        with TestClient(app):
            self.assertIs(app.state.settings, settings)
            self.assertIs(app.state.gateway, gateway)


class MockTokenVerifierTests(unittest.TestCase):
    def test_accepts_test_tokens(self) -> None:
        principal = MockTokenVerifier().verify_token("test:user-1:buyer@example.com")

        self.assertEqual(principal.user_id, "user-1")
        self.assertEqual(principal.email, "buyer@example.com")
        self.assertEqual(principal.role, "customer")

    def test_rejects_other_tokens(self) -> None:
        for token in ("user-1", "test:", "prod:user-1", "test: :x"):
            with self.subTest(token=token):
                with self.assertRaises(AuthVerificationError):
                    MockTokenVerifier().verify_token(token)

    def test_dependency_selects_firebase_verifier(self) -> None:
        settings = Settings(
            auth_provider="firebase",
            payment_gateway="mock",
            firebase_project_id="project-a",
            firebase_audience="aud-a",
        )

        self.assertIsInstance(get_token_verifier(settings), FirebaseTokenVerifier)


class FirebaseVerifierUnitTests(unittest.TestCase):
    @staticmethod
    def _fake_firebase_modules(decoded_token: dict[str, str]) -> dict[str, types.ModuleType]:
        fake_admin = types.ModuleType("firebase_admin")
        fake_auth = types.ModuleType("firebase_admin.auth")

        fake_admin._apps = []

        def initialize_app(options: dict | None = None) -> object:
            app_handle = object()
            fake_admin._apps.append(app_handle)
            return app_handle

        def verify_id_token(token: str, check_revoked: bool = True) -> dict[str, str]:
            if token != "valid-jwt":
                raise ValueError("invalid token")
            return decoded_token

        fake_admin.initialize_app = initialize_app
        fake_admin.auth = fake_auth
        fake_auth.verify_id_token = verify_id_token

        return {
            "firebase_admin": fake_admin,
            "firebase_admin.auth": fake_auth,
        }

    def test_firebase_verifier_maps_buyer_claims(self) -> None:
        fake_modules = self._fake_firebase_modules(
            {"uid": "firebase-user-1", "aud": "aud-a", "email": "buyer@example.com"}
        )

        with patch.dict(sys.modules, fake_modules):
            principal = FirebaseTokenVerifier(project_id="project-a", audience="aud-a").verify_token("valid-jwt")

        self.assertEqual(principal.user_id, "firebase-user-1")
        self.assertEqual(principal.email, "buyer@example.com")
        self.assertEqual(principal.role, "customer")

    def test_firebase_verifier_rejects_invalid_token_and_audience(self) -> None:
        fake_modules = self._fake_firebase_modules({"uid": "firebase-user-1", "aud": "unexpected-aud"})

        with patch.dict(sys.modules, fake_modules):
            verifier = FirebaseTokenVerifier(project_id="project-a", audience="aud-a")
            for token in ("valid-jwt", "forged-jwt"):
                with self.subTest(token=token):
                    with self.assertRaises(AuthVerificationError):
                        verifier.verify_token(token)


if __name__ == "__main__":
    unittest.main()
