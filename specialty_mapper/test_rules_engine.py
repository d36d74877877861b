import unittest

from specialty_mapper.config_loader import ConfigurationError
from specialty_mapper.rules_engine import (
    TIER_DOMAIN,
    TIER_GLOBAL,
    TIER_OVERRIDE,
    TIER_SOURCE,
    RuleEvaluator,
    source_key,
)
from specialty_mapper.schemas import Domain
from specialty_mapper.taxonomy_index import TaxonomyIndex
from specialty_mapper.testing_config import build_test_configuration, build_test_settings

NO_OVERRIDES = {'version': 'none', 'overrides': []}


def _evaluator(rule_documents=None, overrides=None, **settings_values):
    configuration = build_test_configuration(
        build_test_settings(**settings_values), rule_documents=rule_documents, overrides=overrides
    )
    index = TaxonomyIndex(configuration.taxonomy, configuration.synonyms)
    return RuleEvaluator(configuration.rule_documents, configuration.overrides, index, configuration.settings)


def _global(*rules):
    return {'version': '1', 'scope': 'global', 'rules': list(rules)}


class TestHardMapEvaluation(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.evaluator = _evaluator()

    def test_global_rule_uses_default_confidence(self):
        hit = self.evaluator.evaluate_hard_maps('cardiology', Domain.ADULT)
        self.assertEqual(hit.rule_id, 'base-cardiology')
        self.assertEqual(hit.canonical_id, 'CARD-GENERAL')
        self.assertEqual(hit.tier, TIER_GLOBAL)
        self.assertEqual(hit.confidence, 0.95)

    def test_literal_confidence_returned_unchanged(self):
        hit = self.evaluator.evaluate_hard_maps('hospitalist', Domain.ADULT)
        self.assertEqual(hit.rule_id, 'base-hospitalist')
        self.assertEqual(hit.confidence, 0.60)

    def test_source_rules_only_for_their_source(self):
        hit = self.evaluator.evaluate_hard_maps('cardiology interventional', Domain.ADULT, 'mgma')
        self.assertEqual(hit.rule_id, 'mgma-cardiology-interventional')
        self.assertEqual(hit.tier, TIER_SOURCE)
        self.assertEqual(hit.confidence, 0.97)
        self.assertIsNone(self.evaluator.evaluate_hard_maps('cardiology interventional', Domain.ADULT, 'Gallagher'))
        self.assertIsNone(self.evaluator.evaluate_hard_maps('cardiology interventional', Domain.ADULT))

    def test_override_beats_global_rule(self):
        hit = self.evaluator.evaluate_hard_maps('cardiology', Domain.ADULT, 'TestSurvey')
        self.assertEqual(hit.rule_id, 'ovr-survey')
        self.assertEqual(hit.tier, TIER_OVERRIDE)
        self.assertEqual(hit.canonical_id, 'CARD-EP')
        self.assertEqual(hit.confidence, 1.0)

    def test_most_recent_override_wins(self):
        hit = self.evaluator.evaluate_hard_maps('oncology hematology', Domain.ADULT)
        self.assertEqual(hit.rule_id, 'ovr-new')
        self.assertEqual(hit.canonical_id, 'HEMONC-GENERAL')

    def test_domain_rule(self):
        hit = self.evaluator.evaluate_hard_maps('nicu', Domain.PEDIATRIC)
        self.assertEqual(hit.rule_id, 'peds-nicu')
        self.assertEqual(hit.tier, TIER_DOMAIN)
        self.assertIsNone(self.evaluator.evaluate_hard_maps('nicu', Domain.ADULT))

    def test_cross_domain_hit_is_skipped(self):
        with self.assertLogs('specialty_mapper.rules_engine', level='WARNING') as logs:
            hit = self.evaluator.evaluate_hard_maps('general pediatrics', Domain.ADULT)
        self.assertIsNone(hit)
        self.assertIn('base-general-pediatrics', logs.output[0])
        hit = self.evaluator.evaluate_hard_maps('general pediatrics', Domain.PEDIATRIC)
        self.assertEqual(hit.canonical_id, 'PEDS-GENERAL')

    def test_no_match_and_empty(self):
        self.assertIsNone(self.evaluator.evaluate_hard_maps('zoology', Domain.ADULT))
        self.assertIsNone(self.evaluator.evaluate_hard_maps('', Domain.ADULT))

    def test_exact_patterns_compare_normalized(self):
        # "Hospitalist" in the rule file, regex-looking input must not match an exact rule
        self.assertIsNone(self.evaluator.evaluate_hard_maps('hospitalist.*', Domain.ADULT))


class TestDomainLookups(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.evaluator = _evaluator()

    def test_find_override_ignores_domain(self):
        hit = self.evaluator.find_override('newborn medicine')
        self.assertEqual(hit.rule_id, 'ovr-newborn')
        self.assertEqual(hit.canonical_id, 'PEDS-NEONATOLOGY')

    def test_find_override_respects_source(self):
        self.assertIsNone(self.evaluator.find_override('cardiology'))
        self.assertEqual(self.evaluator.find_override('cardiology', ' testsurvey ').rule_id, 'ovr-survey')

    def test_match_domain_rules(self):
        self.assertEqual(self.evaluator.match_domain_rules('nicu', Domain.PEDIATRIC).rule_id, 'peds-nicu')
        self.assertIsNone(self.evaluator.match_domain_rules('nicu', Domain.ADULT))
        self.assertIsNone(self.evaluator.match_domain_rules('', Domain.PEDIATRIC))

    def test_rules_for_tier(self):
        self.assertEqual(
            [r.rule_id for r in self.evaluator.rules_for_tier(TIER_OVERRIDE)],
            ['ovr-new', 'ovr-newborn', 'ovr-survey', 'ovr-old'],
        )
        self.assertEqual(len(self.evaluator.rules_for_tier(TIER_SOURCE, source='MGMA')), 1)
        self.assertEqual(self.evaluator.rules_for_tier(TIER_DOMAIN), ())
        with self.assertRaises(KeyError):
            self.evaluator.rules_for_tier('vendor')

    def test_source_key(self):
        self.assertEqual(source_key(' MGMA '), 'mgma')
        self.assertEqual(source_key(None), '')


class TestRuleOrdering(unittest.TestCase):

    def test_priority_then_load_order(self):
        evaluator = _evaluator(rule_documents=[_global(
            {'id': 'broad', 'pattern': 'medicine', 'canonical_id': 'IM-GENERAL', 'priority': 100},
            {'id': 'first-narrow', 'pattern': 'internal medicine', 'canonical_id': 'IM-HOSPITALIST', 'priority': 50},
            {'id': 'second-narrow', 'pattern': 'internal', 'canonical_id': 'IM-GENERAL', 'priority': 50},
        )], overrides=NO_OVERRIDES)
        hit = evaluator.evaluate_hard_maps('internal medicine', Domain.ADULT)
        self.assertEqual(hit.rule_id, 'first-narrow')

    def test_naive_override_timestamps_are_utc(self):
        overrides = {'version': '1', 'overrides': [
            {'id': 'naive', 'pattern_or_exact': 'Urology', 'canonical_id': 'UROLOGY',
             'created_at': '2024-06-02T15:00:00'},
            {'id': 'aware', 'pattern_or_exact': 'Urology', 'canonical_id': 'NEPHROLOGY',
             'created_at': '2024-06-02T16:00:00+02:00'},
        ]}
        evaluator = _evaluator(rule_documents=[], overrides=overrides)
        self.assertEqual(evaluator.evaluate_hard_maps('urology', Domain.ADULT).rule_id, 'naive')

    def test_equal_timestamps_later_entry_wins(self):
        overrides = {'version': '1', 'overrides': [
            {'pattern_or_exact': 'Urology', 'canonical_id': 'UROLOGY', 'created_at': '2024-06-02T00:00:00Z'},
            {'pattern_or_exact': 'Urology', 'canonical_id': 'NEPHROLOGY', 'created_at': '2024-06-02T00:00:00Z'},
        ]}
        evaluator = _evaluator(rule_documents=[], overrides=overrides)
        hit = evaluator.evaluate_hard_maps('urology', Domain.ADULT)
        self.assertEqual(hit.rule_id, 'override:2')
        self.assertEqual(hit.canonical_id, 'NEPHROLOGY')

    def test_override_default_confidence_from_settings(self):
        evaluator = _evaluator(override_confidence=0.9)
        self.assertEqual(evaluator.evaluate_hard_maps('oncology hematology', Domain.ADULT).confidence, 0.9)

    def test_regex_rules_ignore_case(self):
        evaluator = _evaluator(rule_documents=[_global(
            {'id': 'upper', 'pattern': '^UROLOGY$', 'canonical_id': 'UROLOGY'},
        )], overrides=NO_OVERRIDES)
        self.assertEqual(evaluator.evaluate_hard_maps('urology', Domain.ADULT).rule_id, 'upper')


class TestRuleValidation(unittest.TestCase):

    def test_duplicate_rule_id(self):
        with self.assertRaises(ConfigurationError):
            _evaluator(rule_documents=[_global(
                {'id': 'dup', 'pattern': 'a', 'canonical_id': 'UROLOGY'},
                {'id': 'dup', 'pattern': 'b', 'canonical_id': 'NEPHROLOGY'},
            )], overrides=NO_OVERRIDES)

    def test_override_and_rule_share_id(self):
        overrides = {'version': '1', 'overrides': [
            {'id': 'base-cardiology', 'pattern_or_exact': 'x', 'canonical_id': 'UROLOGY',
             'created_at': '2024-01-01T00:00:00Z'},
        ]}
        with self.assertRaises(ConfigurationError):
            _evaluator(overrides=overrides)

    def test_unknown_canonical_id(self):
        with self.assertRaises(ConfigurationError):
            _evaluator(rule_documents=[_global(
                {'id': 'ghost', 'pattern': 'ghost', 'canonical_id': 'GHOST-SPECIALTY'},
            )], overrides=NO_OVERRIDES)

    def test_domain_rule_targeting_other_domain(self):
        document = {'version': '1', 'scope': 'domain', 'domain': 'PEDIATRIC', 'rules': [
            {'id': 'wrong', 'pattern': '^urology$', 'canonical_id': 'UROLOGY'},
        ]}
        with self.assertRaises(ConfigurationError):
            _evaluator(rule_documents=[document], overrides=NO_OVERRIDES)

    def test_exact_pattern_empty_after_normalization(self):
        with self.assertRaises(ConfigurationError):
            _evaluator(rule_documents=[_global(
                {'id': 'blank', 'match': 'exact', 'pattern': ' / ', 'canonical_id': 'UROLOGY'},
            )], overrides=NO_OVERRIDES)


if __name__ == '__main__':
    unittest.main()
