# --- START OF FILE domain_classifier.py ---

# =============================================================================
# DOMAIN CLASSIFIER - ADULT / PEDIATRIC PARTITION
# =============================================================================
# Decides which half of the taxonomy an input belongs to. The first decisive
# signal wins:
#   metadata hint -> human override -> pediatric rule -> hint tokens
#   -> provider type hint tokens -> ADULT
# Once fixed, no later stage may cross the domain.

import logging
from typing import Any, Mapping, Optional, Tuple, Union

from .models import DomainEvidence, RawInput
from .preprocessing import contains_phrase, normalize
from .rules_engine import RuleEvaluator
from .schemas import Domain, SynonymsDocument
from .taxonomy_index import TaxonomyIndex

logger = logging.getLogger(__name__)

# Accepted spellings of an explicit domain hint, after normalization.
DOMAIN_HINT_ALIASES = {
    'adult': Domain.ADULT,
    'adults': Domain.ADULT,
    'adult medicine': Domain.ADULT,
    'pediatric': Domain.PEDIATRIC,
    'pediatrics': Domain.PEDIATRIC,
    'paediatric': Domain.PEDIATRIC,
    'paediatrics': Domain.PEDIATRIC,
    'peds': Domain.PEDIATRIC,
    'ped': Domain.PEDIATRIC,
    'child': Domain.PEDIATRIC,
    'children': Domain.PEDIATRIC,
}

Metadata = Union[RawInput, Mapping[str, Any], None]


def _metadata_field(metadata: Metadata, name: str) -> Union[str, Domain, None]:
    if metadata is None:
        return None
    if isinstance(metadata, RawInput):
        return getattr(metadata, name)
    value = metadata.get(name)
    if value is None or isinstance(value, Domain):
        return value
    return str(value)


def parse_domain_hint(hint: Union[str, Domain, None]) -> Optional[Domain]:
    """Maps a caller-supplied domain hint to a Domain, or None if unrecognized."""
    if isinstance(hint, Domain):
        return hint
    normalized = normalize(hint)
    if not normalized:
        return None
    if normalized.upper() in Domain.__members__:
        return Domain[normalized.upper()]
    return DOMAIN_HINT_ALIASES.get(normalized)


class DomainClassifier:
    """Infers ADULT vs PEDIATRIC from metadata, rules and hint tokens."""

    def __init__(self, synonyms: SynonymsDocument, rule_evaluator: RuleEvaluator, index: TaxonomyIndex):
        self.rule_evaluator = rule_evaluator
        self.index = index
        self.pediatric_hints = self._normalize_hints(synonyms.domain_hints.pediatric)
        self.adult_hints = self._normalize_hints(synonyms.domain_hints.adult)

    @staticmethod
    def _normalize_hints(hints) -> Tuple[str, ...]:
        normalized = []
        for hint in hints:
            value = normalize(hint)
            if value and value not in normalized:
                normalized.append(value)
        return tuple(normalized)

    def _find_hint(self, normalized_text: str, hints: Tuple[str, ...]) -> Optional[str]:
        for hint in hints:
            if contains_phrase(normalized_text, hint):
                return hint
        return None

    def classify(self, normalized_text: str, metadata: Metadata = None) -> DomainEvidence:
        """
        Returns the resolved domain together with the signal that decided it.

        Args:
            normalized_text (str): Output of the normalizer.
            metadata: RawInput or mapping carrying optional `domain_hint`,
                `source` and `provider_type`.
        """
        raw_hint = _metadata_field(metadata, 'domain_hint')
        hinted = parse_domain_hint(raw_hint)
        if hinted is not None:
            detail = raw_hint.value if isinstance(raw_hint, Domain) else raw_hint
            return DomainEvidence(hinted, 'metadata', detail)
        if raw_hint:
            logger.debug(f"Ignoring unrecognized domain hint '{raw_hint}'")

        override = self.rule_evaluator.find_override(normalized_text, _metadata_field(metadata, 'source'))
        if override is not None:
            return DomainEvidence(self.index.domain_of(override.canonical_id), 'override', override.rule_id)

        pediatric_rule = self.rule_evaluator.match_domain_rules(normalized_text, Domain.PEDIATRIC)
        if pediatric_rule is not None:
            return DomainEvidence(Domain.PEDIATRIC, 'pediatric_rule', pediatric_rule.rule_id)

        if hint := self._find_hint(normalized_text, self.pediatric_hints):
            return DomainEvidence(Domain.PEDIATRIC, 'pediatric_hint', hint)
        if hint := self._find_hint(normalized_text, self.adult_hints):
            return DomainEvidence(Domain.ADULT, 'adult_hint', hint)

        provider_type = normalize(_metadata_field(metadata, 'provider_type'))
        if provider_type:
            if hint := self._find_hint(provider_type, self.pediatric_hints):
                return DomainEvidence(Domain.PEDIATRIC, 'provider_type', hint)
            if hint := self._find_hint(provider_type, self.adult_hints):
                return DomainEvidence(Domain.ADULT, 'provider_type', hint)

        return DomainEvidence(Domain.ADULT, 'default')

    def infer_domain(self, normalized_text: str, metadata: Metadata = None) -> Domain:
        return self.classify(normalized_text, metadata).domain

# --- END OF FILE domain_classifier.py ---
