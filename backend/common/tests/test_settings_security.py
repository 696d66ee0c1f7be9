import importlib
import os

from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase

import tagnamao.settings as project_settings


def _reload_settings():
    return importlib.reload(project_settings)


class SettingsSecurityTests(SimpleTestCase):
    def setUp(self):
        self._env_backup = os.environ.copy()

    def tearDown(self):
        os.environ.clear()
        os.environ.update(self._env_backup)
        _reload_settings()

    def _prepare_common_env(self, production=True):
        os.environ["DJANGO_ENV"] = "production" if production else "development"
        os.environ["DJANGO_ALLOWED_HOSTS"] = "api.tagnamao.com.br"
        os.environ["DJANGO_DEBUG"] = "False" if production else "True"
        os.environ["DJANGO_SKIP_DOTENV"] = "true"
        for key in ("ASAAS_API_KEY", "ASAAS_BASE_URL", "ASAAS_REQUIRE_WEBHOOK_TOKEN", "DEBUG"):
            os.environ.pop(key, None)

    def test_missing_secret_key_blocks_production_start(self):
        self._prepare_common_env()
        os.environ.pop("DJANGO_SECRET_KEY", None)
        os.environ.pop("SECRET_KEY", None)
        with self.assertRaises(ImproperlyConfigured):
            _reload_settings()

    def test_debug_allowed_without_secret_in_dev(self):
        self._prepare_common_env(production=False)
        os.environ.pop("DJANGO_SECRET_KEY", None)
        os.environ.pop("SECRET_KEY", None)
        settings = _reload_settings()
        self.assertTrue(settings.DEBUG)
        self.assertEqual(settings.SECRET_KEY, "dev-secret-key-change-me")

    def test_console_email_blocked_in_production(self):
        self._prepare_common_env()
        os.environ["DJANGO_SECRET_KEY"] = "s3cr3t-prod"
        os.environ["DJANGO_EMAIL_BACKEND"] = "django.core.mail.backends.console.EmailBackend"
        os.environ.pop("ALLOW_CONSOLE_EMAIL_IN_PROD", None)
        with self.assertRaises(ImproperlyConfigured):
            _reload_settings()

    def test_webhook_token_required_outside_debug(self):
        self._prepare_common_env()
        os.environ["DJANGO_SECRET_KEY"] = "s3cr3t-prod"
        os.environ["DJANGO_EMAIL_BACKEND"] = "django.core.mail.backends.smtp.EmailBackend"
        settings = _reload_settings()
        self.assertTrue(settings.ASAAS_REQUIRE_WEBHOOK_TOKEN)
        self.assertEqual(settings.ASAAS_BASE_URL, "https://api.asaas.com/v3")

    def test_sandbox_key_points_to_sandbox(self):
        self._prepare_common_env(production=False)
        os.environ["ASAAS_API_KEY"] = "$aact_hmlg_000abc"
        settings = _reload_settings()
        self.assertEqual(settings.ASAAS_BASE_URL, "https://sandbox.asaas.com/api/v3")
        self.assertFalse(settings.ASAAS_REQUIRE_WEBHOOK_TOKEN)
