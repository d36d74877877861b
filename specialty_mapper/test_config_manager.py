import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import requests

from specialty_mapper.config_loader import ConfigurationError
from specialty_mapper.config_manager import PRESETS, ConfigSnapshot, build_engine_settings, get_config


class _SectionManager:
    """Minimal stand-in exposing only the engine section."""

    def __init__(self, engine_section):
        self.engine_section = engine_section

    def get_section(self, section):
        return dict(self.engine_section) if section == 'engine' else {}


class TestBuildEngineSettings(unittest.TestCase):

    def test_default_preset(self):
        settings = build_engine_settings(_SectionManager({'preset': 'default'}))
        self.assertEqual(settings.preset, 'default')
        self.assertEqual(settings.min_decision_threshold, 0.68)
        self.assertEqual(settings.weights.token, 0.45)
        self.assertEqual(settings.weights.negative, -0.35)

    def test_every_preset_validates(self):
        for name, values in PRESETS.items():
            settings = build_engine_settings(_SectionManager({}), preset=name)
            self.assertEqual(settings.preset, name)
            self.assertEqual(settings.min_decision_threshold, values['min_decision_threshold'])

    def test_section_values_override_preset(self):
        manager = _SectionManager({
            'preset': 'default',
            'min_decision_threshold': 0.72,
            'weights': {'char_sim': 0.10},
            'top_n': 3,
        })
        settings = build_engine_settings(manager)
        self.assertEqual(settings.min_decision_threshold, 0.72)
        self.assertEqual(settings.weights.char_sim, 0.10)
        self.assertEqual(settings.weights.token, 0.45)
        self.assertEqual(settings.top_n, 3)

    def test_explicit_preset_argument_reapplies_preset_tuning(self):
        manager = _SectionManager({'preset': 'default', 'min_decision_threshold': 0.72, 'top_n': 3})
        settings = build_engine_settings(manager, preset='conservative')
        self.assertEqual(settings.preset, 'conservative')
        self.assertEqual(settings.min_decision_threshold, 0.80)
        self.assertEqual(settings.weights.token, 0.50)
        self.assertEqual(settings.top_n, 3)

    def test_threshold_argument_wins(self):
        settings = build_engine_settings(_SectionManager({'min_decision_threshold': 0.72}),
                                         preset='aggressive', threshold=0.9)
        self.assertEqual(settings.min_decision_threshold, 0.9)

    def test_unknown_preset(self):
        with self.assertRaises(ConfigurationError) as ctx:
            build_engine_settings(_SectionManager({'preset': 'reckless'}))
        self.assertIn('reckless', str(ctx.exception))

    def test_invalid_values_are_configuration_errors(self):
        with self.assertRaises(ConfigurationError):
            build_engine_settings(_SectionManager({'top_n': 0}))
        with self.assertRaises(ConfigurationError):
            build_engine_settings(_SectionManager({'char_similarity': 'soundex'}))
        with self.assertRaises(ConfigurationError):
            build_engine_settings(_SectionManager({}), threshold=1.5)


class TestConfigManager(unittest.TestCase):

    def setUp(self):
        self.manager = get_config()

    def tearDown(self):
        # Environment patches are gone by now; restore the on-disk configuration.
        self.manager.reload()

    def test_singleton(self):
        from specialty_mapper.config_manager import ConfigManager
        self.assertIs(ConfigManager(), self.manager)

    def test_bundled_config_file(self):
        self.manager.reload()
        self.assertTrue(self.manager.config_source.endswith('config.yaml'))
        self.assertEqual(self.manager.get('engine.preset'), 'default')
        self.assertEqual(self.manager.get('engine.char_similarity'), 'jaro_winkler')
        self.assertEqual(len(self.manager.get('data.rules')), 5)

    def test_get_falls_back_to_defaults_then_argument(self):
        self.assertEqual(self.manager.get('api.workers'), 4)
        self.assertEqual(self.manager.get('engine.no_such_key', 'fallback'), 'fallback')
        self.assertIn('engine.top_n', self.manager)
        self.assertNotIn('engine.no_such_key', self.manager)

    def test_get_section_merges_defaults(self):
        section = self.manager.get_section('data')
        self.assertIn('taxonomy', section)
        self.assertIn('overrides', section)

    def test_set_and_item_access(self):
        self.manager['engine.top_n'] = 7
        self.assertEqual(self.manager['engine.top_n'], 7)

    def test_environment_overrides(self):
        env = {
            'MAPPER_PRESET': 'conservative',
            'MAPPER_MIN_THRESHOLD': '0.9',
            'MAPPER_MAX_WORKERS': '4',
            'API_PORT': '8080',
            'API_DEBUG': 'true',
            'LOG_LEVEL': 'DEBUG',
        }
        with mock.patch.dict(os.environ, env):
            self.manager.reload()
            self.assertEqual(self.manager.get('engine.preset'), 'conservative')
            self.assertEqual(self.manager.get('engine.min_decision_threshold'), 0.9)
            self.assertEqual(self.manager.get('engine.max_workers'), 4)
            self.assertEqual(self.manager.get('api.port'), 8080)
            self.assertIs(self.manager.get('api.debug'), True)
            self.assertEqual(self.manager.get('logging.level'), 'DEBUG')

    def test_explicit_config_path(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'settings.yaml')
            with open(path, 'w', encoding='utf-8') as f:
                f.write("engine:\n  preset: pediatric\n  top_n: 2\n")
            with mock.patch.dict(os.environ, {'SPECIALTY_MAPPER_CONFIG': path}):
                self.manager.reload()
                self.assertEqual(self.manager.config_source, path)
                settings = build_engine_settings(self.manager)
                self.assertEqual(settings.preset, 'pediatric')
                self.assertEqual(settings.top_n, 2)
                self.assertEqual(settings.min_decision_threshold, 0.70)

    def test_missing_explicit_config_file_is_fatal(self):
        previous = self.manager.config_source
        with mock.patch.dict(os.environ, {'SPECIALTY_MAPPER_CONFIG': '/nonexistent/settings.yaml'}):
            with self.assertRaises(ConfigurationError):
                self.manager.reload()
        self.assertEqual(self.manager.config_source, previous)

    def test_unparseable_config_file_is_fatal(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'settings.yaml')
            with open(path, 'w', encoding='utf-8') as f:
                f.write("engine:\n  min_decision_threshold: [0.9\n")
            with mock.patch.dict(os.environ, {'SPECIALTY_MAPPER_CONFIG': path}):
                with self.assertRaises(ConfigurationError):
                    self.manager.reload()
                with self.assertRaises(ConfigurationError):
                    self.manager.load_snapshot()

    def test_non_mapping_config_file_is_fatal(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'settings.yaml')
            with open(path, 'w', encoding='utf-8') as f:
                f.write("- just\n- a list\n")
            with mock.patch.dict(os.environ, {'SPECIALTY_MAPPER_CONFIG': path}):
                with self.assertRaises(ConfigurationError):
                    self.manager.load_snapshot()

    def test_absent_bundled_file_uses_defaults(self):
        missing = (Path('/nonexistent/config.yaml'), False)
        with mock.patch.object(ConfigSnapshot, '_config_path', return_value=missing):
            snapshot = self.manager.load_snapshot()
        self.assertEqual(snapshot.config_source, 'defaults')
        self.assertEqual(snapshot.get('engine.preset'), 'default')

    def test_snapshot_leaves_manager_untouched(self):
        previous = self.manager.config_source
        with mock.patch.dict(os.environ, {'MAPPER_PRESET': 'aggressive'}):
            snapshot = self.manager.load_snapshot()
        self.assertEqual(snapshot.get('engine.preset'), 'aggressive')
        self.assertEqual(self.manager.get('engine.preset'), 'default')
        self.assertEqual(self.manager.config_source, previous)
        self.manager.apply(snapshot)
        self.assertEqual(self.manager.get('engine.preset'), 'aggressive')

    @mock.patch('specialty_mapper.config_manager.requests.get')
    def test_remote_config(self, mock_get):
        response = mock.Mock()
        response.text = "engine:\n  preset: aggressive\n"
        response.raise_for_status.return_value = None
        mock_get.return_value = response

        url = 'https://config.example.org/specialty_mapper.yaml'
        with mock.patch.dict(os.environ, {'SPECIALTY_MAPPER_CONFIG_URL': url}):
            self.manager.reload()
            self.assertEqual(self.manager.config_source, url)
            self.assertEqual(self.manager.get('engine.preset'), 'aggressive')
        mock_get.assert_called_with(url, timeout=10)

    @mock.patch('specialty_mapper.config_manager.requests.get')
    def test_remote_config_failure_falls_back_to_file(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("unreachable")
        with mock.patch.dict(os.environ, {'SPECIALTY_MAPPER_CONFIG_URL': 'https://config.example.org/x.yaml'}):
            self.manager.reload()
            self.assertTrue(self.manager.config_source.endswith('config.yaml'))


if __name__ == '__main__':
    unittest.main()
