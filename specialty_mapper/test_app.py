import unittest
from unittest import mock

from specialty_mapper import app as app_module
from specialty_mapper import mapping_engine
from specialty_mapper.config_loader import ConfigurationError
from specialty_mapper.config_manager import ConfigSnapshot, get_config
from specialty_mapper.testing_config import build_test_engine


class TestSpecialtyMappingApi(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.engine = build_test_engine()

    def setUp(self):
        mapping_engine._engine = self.engine
        app_module._app_initialized = False
        app_module._init_error = None
        patcher = mock.patch.object(app_module, 'initialize_mapping_engine', return_value=self.engine)
        self.initialize = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = app_module.app.test_client()

    def tearDown(self):
        mapping_engine._engine = None
        app_module._app_initialized = False
        app_module._init_error = None

    def test_health_check(self):
        response = self.client.get('/health')
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data['status'], 'healthy')
        self.assertFalse(data['app_initialized'])

    def test_map_single(self):
        response = self.client.post('/map', json={'source': 'MGMA', 'raw_name': 'Cardiology'})
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data['decided_canonical_id'], 'CARD-GENERAL')
        self.assertEqual(data['status'], 'DECIDED')
        self.assertEqual(data['rules_hit'], ['base-cardiology'])
        self.assertEqual(len(data['request_hash']), 64)
        self.initialize.assert_called_once()

        self.assertTrue(self.client.get('/health').get_json()['engine_ready'])

    def test_map_undecided_carries_provenance(self):
        data = self.client.post('/map', json={'source': 'MGMA', 'raw_name': 'Nephrology Urology'}).get_json()
        self.assertEqual(data['status'], 'UNDECIDED')
        self.assertIsNone(data['decided_canonical_id'])
        self.assertIn('ambiguous', data['notes'])

    def test_map_requires_raw_name(self):
        self.assertEqual(self.client.post('/map', json={'source': 'MGMA'}).status_code, 400)
        self.assertEqual(self.client.post('/map', json={'raw_name': 42}).status_code, 400)
        self.assertEqual(self.client.post('/map', data='not json').status_code, 400)

    def test_map_batch(self):
        payload = {'inputs': [
            {'source': 'MGMA', 'raw_name': 'Cardiology'},
            {'source': 'MGMA', 'raw_name': 'NICU'},
            {'source': 'MGMA', 'raw_name': 'Zoology'},
        ], 'max_workers': 2}
        response = self.client.post('/map_batch', json=payload)
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual([d['input']['raw_name'] for d in data['decisions']], ['Cardiology', 'NICU', 'Zoology'])
        self.assertEqual(data['summary']['total'], 3)
        self.assertEqual(data['summary']['decided'], 2)
        self.assertEqual(data['fingerprint'], self.engine.fingerprint)

    def test_map_batch_validation(self):
        self.assertEqual(self.client.post('/map_batch', json={'inputs': 'Cardiology'}).status_code, 400)
        response = self.client.post('/map_batch', json={'inputs': [{'raw_name': 'Cardiology'}, {'source': 'x'}]})
        self.assertEqual(response.status_code, 400)
        self.assertIn('inputs[1]', response.get_json()['error'])

    def test_suggestions(self):
        response = self.client.post('/suggestions', json={'raw_name': 'Hospitalist'})
        self.assertEqual(response.status_code, 200)
        candidates = response.get_json()['candidates']
        self.assertEqual(candidates[0]['canonical_id'], 'IM-HOSPITALIST')
        self.assertEqual(self.client.post('/suggestions', json={}).status_code, 400)

    def test_suggestions_top_n(self):
        response = self.client.post('/suggestions', json={'raw_name': 'Cardiology', 'top_n': 2})
        self.assertEqual(len(response.get_json()['candidates']), 2)
        self.assertEqual(self.client.post('/suggestions', json={'raw_name': 'Cardiology', 'top_n': 0}).status_code, 400)
        self.assertEqual(self.client.post('/suggestions', json={'raw_name': 'Cardiology', 'top_n': '2'}).status_code, 400)

    def test_config_status(self):
        data = self.client.get('/config/status').get_json()
        self.assertEqual(data['fingerprint'], self.engine.fingerprint)
        self.assertIn('config_source', data)
        self.assertIn('taxonomy', data['versions'])

    def test_initialization_failure(self):
        self.initialize.side_effect = ConfigurationError('taxonomy missing')
        response = self.client.post('/map', json={'raw_name': 'Cardiology'})
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.get_json()['detail'], 'taxonomy missing')
        self.assertEqual(self.client.get('/health').get_json()['status'], 'degraded')

    def test_config_reload(self):
        replacement = build_test_engine(preset='conservative')
        with mock.patch.object(app_module, 'reload_mapping_engine', return_value=replacement):
            response = self.client.post('/config/reload')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['fingerprint'], replacement.fingerprint)

    def test_config_reload_failure_keeps_engine(self):
        with mock.patch.object(app_module, 'reload_mapping_engine', side_effect=ConfigurationError('bad rules')):
            response = self.client.post('/config/reload')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['detail'], 'bad rules')
        self.assertIs(mapping_engine.get_mapping_engine(), self.engine)

    def test_rejected_reload_keeps_settings(self):
        manager = get_config()
        previous = manager.config_source
        staged = ConfigSnapshot({'engine': {'preset': 'aggressive'}}, 'staged.yaml')
        with mock.patch.object(manager, 'load_snapshot', return_value=staged), \
                mock.patch.object(app_module, 'reload_mapping_engine',
                                  side_effect=ConfigurationError('bad rules')) as reload_engine:
            response = self.client.post('/config/reload')
        self.assertEqual(response.status_code, 400)
        self.assertIs(reload_engine.call_args.kwargs['config_manager'], staged)
        self.assertEqual(manager.config_source, previous)
        self.assertEqual(self.client.get('/config/status').get_json()['config_source'], previous)

    def test_accepted_reload_installs_settings(self):
        manager = get_config()
        staged = ConfigSnapshot({'engine': {'preset': 'aggressive'}}, 'staged.yaml')
        replacement = build_test_engine(preset='aggressive')
        try:
            with mock.patch.object(manager, 'load_snapshot', return_value=staged), \
                    mock.patch.object(app_module, 'reload_mapping_engine', return_value=replacement):
                response = self.client.post('/config/reload')
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.get_json()['source'], 'staged.yaml')
            self.assertEqual(manager.get('engine.preset'), 'aggressive')
        finally:
            manager.reload()


if __name__ == '__main__':
    unittest.main()
