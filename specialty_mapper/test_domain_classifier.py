import unittest

from specialty_mapper.domain_classifier import DomainClassifier, parse_domain_hint
from specialty_mapper.models import RawInput
from specialty_mapper.rules_engine import RuleEvaluator
from specialty_mapper.schemas import Domain
from specialty_mapper.taxonomy_index import TaxonomyIndex
from specialty_mapper.testing_config import build_test_configuration


class TestParseDomainHint(unittest.TestCase):

    def test_canonical_names(self):
        self.assertEqual(parse_domain_hint('ADULT'), Domain.ADULT)
        self.assertEqual(parse_domain_hint('pediatric'), Domain.PEDIATRIC)

    def test_aliases(self):
        self.assertEqual(parse_domain_hint('Peds'), Domain.PEDIATRIC)
        self.assertEqual(parse_domain_hint(' Paediatrics '), Domain.PEDIATRIC)
        self.assertEqual(parse_domain_hint('Adults'), Domain.ADULT)

    def test_domain_members_pass_through(self):
        self.assertIs(parse_domain_hint(Domain.PEDIATRIC), Domain.PEDIATRIC)
        self.assertIs(parse_domain_hint(Domain.ADULT), Domain.ADULT)

    def test_unrecognized(self):
        self.assertIsNone(parse_domain_hint('geriatric'))
        self.assertIsNone(parse_domain_hint(''))
        self.assertIsNone(parse_domain_hint(None))


class TestDomainClassifier(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        configuration = build_test_configuration()
        index = TaxonomyIndex(configuration.taxonomy, configuration.synonyms)
        evaluator = RuleEvaluator(configuration.rule_documents, configuration.overrides, index,
                                  configuration.settings)
        cls.classifier = DomainClassifier(configuration.synonyms, evaluator, index)

    def test_metadata_hint_wins(self):
        evidence = self.classifier.classify('pediatric cardiology', {'domain_hint': 'Adult'})
        self.assertEqual(evidence.domain, Domain.ADULT)
        self.assertEqual(evidence.signal, 'metadata')

    def test_enum_metadata_hint(self):
        for metadata in ({'domain_hint': Domain.PEDIATRIC}, RawInput('MGMA', 'Cardiology', domain_hint=Domain.PEDIATRIC)):
            evidence = self.classifier.classify('cardiology', metadata)
            self.assertEqual(evidence.domain, Domain.PEDIATRIC)
            self.assertEqual(evidence.signal, 'metadata')
            self.assertEqual(evidence.detail, 'PEDIATRIC')

    def test_unrecognized_hint_falls_through(self):
        evidence = self.classifier.classify('pediatric cardiology', {'domain_hint': 'geriatric'})
        self.assertEqual(evidence.domain, Domain.PEDIATRIC)
        self.assertEqual(evidence.signal, 'pediatric_hint')

    def test_override_decides_domain(self):
        evidence = self.classifier.classify('newborn medicine')
        self.assertEqual(evidence.domain, Domain.PEDIATRIC)
        self.assertEqual(evidence.signal, 'override')
        self.assertEqual(evidence.detail, 'ovr-newborn')

    def test_pediatric_rule(self):
        evidence = self.classifier.classify('nicu')
        self.assertEqual(evidence.domain, Domain.PEDIATRIC)
        self.assertEqual(evidence.signal, 'pediatric_rule')

    def test_hint_tokens(self):
        self.assertEqual(self.classifier.classify('peds cardiology').signal, 'pediatric_hint')
        evidence = self.classifier.classify('adult congenital cardiology')
        self.assertEqual(evidence.domain, Domain.ADULT)
        self.assertEqual(evidence.signal, 'adult_hint')

    def test_pediatric_hint_checked_before_adult_hint(self):
        self.assertEqual(self.classifier.infer_domain('adult and pediatric urology'), Domain.PEDIATRIC)

    def test_hint_tokens_are_whole_words(self):
        # "pediatrician" does not contain the whole token "pediatric"
        self.assertEqual(self.classifier.classify('pediatrician').signal, 'default')

    def test_provider_type(self):
        evidence = self.classifier.classify('cardiology', RawInput('MGMA', 'Cardiology', provider_type='Pediatric MD'))
        self.assertEqual(evidence.domain, Domain.PEDIATRIC)
        self.assertEqual(evidence.signal, 'provider_type')

    def test_default_adult(self):
        evidence = self.classifier.classify('urology')
        self.assertEqual(evidence.domain, Domain.ADULT)
        self.assertEqual(evidence.signal, 'default')
        self.assertEqual(self.classifier.classify('').domain, Domain.ADULT)


if __name__ == '__main__':
    unittest.main()
