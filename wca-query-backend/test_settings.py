"""
Tests for environment-driven settings and the startup environment guard.
"""

import unittest
from unittest.mock import patch

from env_guard import validate_env_vars, validate_environment
from settings import SettingsError, build_database_url, load_settings


class TestLoadSettings(unittest.TestCase):

    def test_defaults(self):
        settings = load_settings({"JWT_SECRET": "s3cret"})
        self.assertEqual(settings.jwt_secret, "s3cret")
        self.assertEqual(settings.database_url, "mysql+pymysql://root@localhost:3306/wca?charset=utf8mb4")
        self.assertEqual(settings.db_pool_size, 10)
        self.assertEqual(settings.default_page_size, 50)
        self.assertEqual(settings.max_user_limit, 100)
        self.assertEqual(settings.cors_origins, ["http://localhost:5173"])
        self.assertEqual(settings.port, 3001)
        self.assertEqual(settings.log_level, "INFO")

    def test_overrides(self):
        settings = load_settings({
            "JWT_SECRET": "s3cret",
            "DB_POOL_SIZE": "4",
            "CORS_ORIGINS": "https://stats.example.org, http://localhost:5173",
            "PORT": "8080",
            "LOG_LEVEL": "debug",
        })
        self.assertEqual(settings.db_pool_size, 4)
        self.assertEqual(settings.cors_origins, ["https://stats.example.org", "http://localhost:5173"])
        self.assertEqual(settings.port, 8080)
        self.assertEqual(settings.log_level, "DEBUG")

    def test_missing_secret(self):
        with self.assertRaises(SettingsError):
            load_settings({})

    def test_bad_integer(self):
        with self.assertRaises(SettingsError):
            load_settings({"JWT_SECRET": "x", "DB_POOL_SIZE": "ten"})

    def test_zero_pool_size(self):
        with self.assertRaises(SettingsError):
            load_settings({"JWT_SECRET": "x", "DB_POOL_SIZE": "0"})

    def test_token_lifetime_not_configured_here(self):
        # Tokens are minted by the login service; its lifetime setting is not ours to validate
        settings = load_settings({"JWT_SECRET": "x", "JWT_EXPIRES_DAYS": "never"})
        self.assertFalse(hasattr(settings, "jwt_expires_days"))

    def test_bad_log_level(self):
        with self.assertRaises(SettingsError):
            load_settings({"JWT_SECRET": "x", "LOG_LEVEL": "chatty"})


class TestBuildDatabaseUrl(unittest.TestCase):

    def test_explicit_url_wins(self):
        url = build_database_url({"DATABASE_URL": " sqlite:///wca.db \n", "DB_NAME": "other"})
        self.assertEqual(url, "sqlite:///wca.db")

    def test_parts_with_password_escaped(self):
        url = build_database_url({
            "DB_HOST": "db",
            "DB_USER": "reader",
            "DB_PASS": "p@ss:word",
            "DB_NAME": "wca_export",
        })
        self.assertEqual(url, "mysql+pymysql://reader:p%40ss%3Aword@db:3306/wca_export?charset=utf8mb4")


class TestEnvGuard(unittest.TestCase):

    def test_missing_secret_reported(self):
        errors = validate_env_vars({})
        self.assertEqual(len(errors), 1)
        self.assertIn("JWT_SECRET", errors[0])

    def test_complete_env(self):
        self.assertEqual(validate_env_vars({"JWT_SECRET": "x"}), [])

    @patch("builtins.print")
    def test_strict_raises(self, _print):
        with self.assertRaises(EnvironmentError):
            validate_environment(strict=True, env={})

    @patch("builtins.print")
    def test_non_strict_returns_false(self, _print):
        self.assertFalse(validate_environment(strict=False, env={"JWT_SECRET": "x", "PORT": "nope"}))

    @patch("builtins.print")
    def test_valid_environment(self, _print):
        self.assertTrue(validate_environment(strict=True, env={"JWT_SECRET": "x"}))


if __name__ == "__main__":
    unittest.main()
