#!/usr/bin/env python3
"""
Settings tests: defaults, VERIFIER_* overrides, .env loading and validation.
"""

import os
import unittest
from unittest.mock import patch

from config.settings import VerifierSettings, _load_env_file, load_settings
from core.errors import ValidationError


class TestVerifierSettings(unittest.TestCase):

    def test_defaults(self):
        settings = VerifierSettings(read_environment=False)
        self.assertEqual(settings.connection_timeout, 30.0)
        self.assertEqual(settings.query_timeout, 60.0)
        self.assertEqual(settings.max_connections, 10)
        self.assertEqual(settings.max_concurrent_tables, 5)
        self.assertEqual(settings.processing_timeout, 30.0)
        self.assertEqual(settings.sample_size, 5)
        self.assertEqual(settings.schema_cache_ttl, 300.0)
        self.assertEqual(settings.network_idle_timeout, 300.0)
        self.assertEqual(settings.embedded_idle_timeout, 30.0)
        self.assertEqual(settings.max_embedded_handles, 10)
        self.assertEqual(settings.postgres_sslmode, 'prefer')
        self.assertTrue(settings.enable_parallel)
        self.assertEqual(settings.validate(), [])

    def test_environment_overrides(self):
        env = {
            'VERIFIER_QUERY_TIMEOUT': '15',
            'VERIFIER_MAX_CONCURRENT_TABLES': '8',
            'VERIFIER_ENABLE_PARALLEL': 'false',
            'VERIFIER_LOG_LEVEL': ' DEBUG ',
        }
        with patch.dict(os.environ, env):
            settings = VerifierSettings()
        self.assertEqual(settings.query_timeout, 15.0)
        self.assertEqual(settings.max_concurrent_tables, 8)
        self.assertFalse(settings.enable_parallel)
        self.assertEqual(settings.log_level, 'DEBUG')

    def test_invalid_environment_value(self):
        with patch.dict(os.environ, {'VERIFIER_SAMPLE_SIZE': 'lots'}):
            with self.assertRaises(ValidationError):
                VerifierSettings()

    def test_validate_reports_problems(self):
        settings = VerifierSettings(read_environment=False, max_concurrent_tables=21,
                                    connection_timeout=0.5, sample_size=0)
        problems = settings.validate()
        self.assertEqual(len(problems), 3)

    def test_pool_and_ssl_settings(self):
        with patch.dict(os.environ, {'VERIFIER_POSTGRES_SSLMODE': 'require', 'VERIFIER_MAX_EMBEDDED_HANDLES': '4'}):
            settings = VerifierSettings()
        self.assertEqual(settings.postgres_sslmode, 'require')
        self.assertEqual(settings.max_embedded_handles, 4)

        bad = VerifierSettings(read_environment=False, postgres_sslmode='sometimes', max_embedded_handles=0)
        self.assertEqual(len(bad.validate()), 2)

    def test_load_settings_overrides_and_validation(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_settings(env_file=None, sample_size=10, log_level=None)
            self.assertEqual(settings.sample_size, 10)
            self.assertEqual(settings.log_level, 'INFO')

            with self.assertRaises(ValidationError):
                load_settings(max_concurrent_tables=0)
            with self.assertRaises(ValidationError):
                load_settings(no_such_setting=1)

    def test_env_file_does_not_override_exported_variables(self):
        import tempfile
        with tempfile.TemporaryDirectory() as tmp:
            env_file = os.path.join(tmp, '.env')
            with open(env_file, 'w') as f:
                f.write("# comment\nVERIFIER_SAMPLE_SIZE=7\nVERIFIER_QUERY_TIMEOUT='12'\n")
            with patch.dict(os.environ, {'VERIFIER_SAMPLE_SIZE': '3'}, clear=True):
                from pathlib import Path
                _load_env_file(Path(env_file))
                self.assertEqual(os.environ['VERIFIER_SAMPLE_SIZE'], '3')
                self.assertEqual(os.environ['VERIFIER_QUERY_TIMEOUT'], '12')

    def test_safe_dict(self):
        data = VerifierSettings(read_environment=False).get_safe_dict()
        self.assertNotIn('read_environment', data)
        self.assertEqual(data['sample_size'], 5)


if __name__ == '__main__':
    unittest.main()
