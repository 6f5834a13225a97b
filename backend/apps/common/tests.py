"""
Tests for shared logging helpers
"""
import json
import logging

from django.conf import settings
from django.test import SimpleTestCase
from django.utils.module_loading import import_string

from apps.common.correlation import set_correlation_id
from apps.common.logging_utils import CorrelationIdFilter, build_log_extra


def _configured(name):
    config = dict(settings.LOGGING['formatters'][name])
    return import_string(config.pop('()'))(**config)


class JsonLoggingTest(SimpleTestCase):
    """Test the production log format"""

    def tearDown(self):
        set_correlation_id(None)

    def _record(self, **extra):
        record = logging.LogRecord('apps.profiles.reflection', logging.INFO, __file__, 1, 'reflection_completed', (), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_one_json_object_with_extra_fields(self):
        formatter = _configured('json')
        record = self._record(profile_id='p-1', signals_processed=4)

        payload = json.loads(formatter.format(record))

        self.assertEqual(payload['event'], 'reflection_completed')
        self.assertEqual(payload['level'], 'INFO')
        self.assertEqual(payload['logger'], 'apps.profiles.reflection')
        self.assertIn('timestamp', payload)
        self.assertEqual(payload['profile_id'], 'p-1')
        self.assertEqual(payload['signals_processed'], 4)

    def test_correlation_id_is_filled_from_context(self):
        set_correlation_id('req-42')
        record = self._record()

        self.assertTrue(CorrelationIdFilter().filter(record))
        payload = json.loads(_configured('json').format(record))

        self.assertEqual(payload['correlation_id'], 'req-42')

    def test_build_log_extra(self):
        set_correlation_id('req-7')
        self.assertEqual(build_log_extra(user_id=3), {'correlation_id': 'req-7', 'user_id': 3})
        self.assertEqual(build_log_extra('explicit'), {'correlation_id': 'explicit'})
