# --- START OF FILE rules_engine.py ---

# =============================================================================
# HARD-MAP RULE EVALUATOR
# =============================================================================
# Runs the configured exact/regex rules in a fixed tier order:
#   overrides -> source-scoped -> domain-scoped -> global
# Within a tier rules run by ascending priority, then load order. The first
# match ends evaluation and its literal confidence is returned unchanged.

import re
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from .config_loader import ConfigurationError
from .models import RuleHit
from .preprocessing import normalize
from .schemas import Domain, EngineSettings, MatchType, OverridesDocument, RuleScope, RulesDocument
from .taxonomy_index import TaxonomyIndex

logger = logging.getLogger(__name__)

TIER_OVERRIDE = 'override'
TIER_SOURCE = 'source'
TIER_DOMAIN = 'domain'
TIER_GLOBAL = 'global'

TIER_ORDER = (TIER_OVERRIDE, TIER_SOURCE, TIER_DOMAIN, TIER_GLOBAL)


@dataclass(frozen=True)
class CompiledRule:
    """A rule or override ready for matching against normalized text."""
    rule_id: str
    tier: str
    canonical_id: str
    confidence: float
    priority: int
    order: int
    exact: Optional[str] = None
    regex: Optional[Pattern] = None
    source: Optional[str] = None
    created_at: Optional[datetime] = None

    def match(self, normalized_text: str) -> Optional[str]:
        """Returns the matched text, or None."""
        if self.regex is not None:
            found = self.regex.search(normalized_text)
            return found.group(0) if found else None
        return normalized_text if normalized_text == self.exact else None

    def applies_to_source(self, source_key: str) -> bool:
        return self.source is None or self.source == source_key

    def to_hit(self, matched_text: str) -> RuleHit:
        return RuleHit(
            rule_id=self.rule_id,
            canonical_id=self.canonical_id,
            confidence=self.confidence,
            tier=self.tier,
            matched_text=matched_text,
        )


def source_key(source: Optional[str]) -> str:
    """Source tags compare case-insensitively ("MGMA" == "mgma")."""
    return (source or '').strip().lower()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _compile_matcher(pattern: str, match: MatchType, origin: str) -> Tuple[Optional[str], Optional[Pattern]]:
    if match is MatchType.EXACT:
        exact = normalize(pattern)
        if not exact:
            raise ConfigurationError(f"{origin}: exact pattern {pattern!r} is empty after normalization")
        return exact, None
    try:
        return None, re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ConfigurationError(f"{origin}: unparseable pattern {pattern!r}: {e}") from e


class RuleEvaluator:
    """
    Generic evaluator over tagged rules.

    Every rule document contributes to exactly one tier; the evaluator never
    dispatches on the source beyond selecting the source-scoped list.
    """

    def __init__(self, rule_documents: Sequence[RulesDocument], overrides: OverridesDocument,
                 index: TaxonomyIndex, settings: EngineSettings):
        self.index = index
        self.settings = settings
        self._seen_ids: Dict[str, str] = {}

        self._overrides = self._compile_overrides(overrides)

        source_rules: Dict[str, List[CompiledRule]] = {}
        domain_rules: Dict[Domain, List[CompiledRule]] = {domain: [] for domain in Domain}
        global_rules: List[CompiledRule] = []
        order = 0
        for document in rule_documents:
            for rule in document.rules:
                origin = f"rule {rule.id}"
                self._claim_id(rule.id, origin)
                self._check_canonical(rule.canonical_id, origin)
                if document.scope is RuleScope.DOMAIN:
                    target_domain = index.domain_of(rule.canonical_id)
                    if target_domain is not document.domain:
                        raise ConfigurationError(
                            f"{origin}: {document.domain.value}-scoped rule targets "
                            f"{target_domain.value} specialty {rule.canonical_id}"
                        )
                exact, regex = _compile_matcher(rule.pattern, rule.match, origin)
                tier = {
                    RuleScope.SOURCE: TIER_SOURCE,
                    RuleScope.DOMAIN: TIER_DOMAIN,
                    RuleScope.GLOBAL: TIER_GLOBAL,
                }[document.scope]
                compiled = CompiledRule(
                    rule_id=rule.id,
                    tier=tier,
                    canonical_id=rule.canonical_id,
                    confidence=rule.confidence if rule.confidence is not None else settings.hard_map_confidence,
                    priority=rule.priority,
                    order=order,
                    exact=exact,
                    regex=regex,
                    source=source_key(document.source) if document.scope is RuleScope.SOURCE else None,
                )
                order += 1
                if document.scope is RuleScope.SOURCE:
                    source_rules.setdefault(compiled.source, []).append(compiled)
                elif document.scope is RuleScope.DOMAIN:
                    domain_rules[document.domain].append(compiled)
                else:
                    global_rules.append(compiled)

        def ordered(rules: Iterable[CompiledRule]) -> Tuple[CompiledRule, ...]:
            return tuple(sorted(rules, key=lambda r: (r.priority, r.order)))

        self._source_rules = {key: ordered(rules) for key, rules in source_rules.items()}
        self._domain_rules = {domain: ordered(rules) for domain, rules in domain_rules.items()}
        self._global_rules = ordered(global_rules)

        logger.info(
            f"Rule evaluator: {len(self._overrides)} overrides, "
            f"{sum(len(r) for r in self._source_rules.values())} source rules "
            f"({', '.join(sorted(self._source_rules)) or 'none'}), "
            f"{sum(len(r) for r in self._domain_rules.values())} domain rules, "
            f"{len(self._global_rules)} global rules"
        )

    def _claim_id(self, rule_id: str, origin: str):
        if rule_id in self._seen_ids:
            raise ConfigurationError(f"Duplicate rule id {rule_id!r} ({self._seen_ids[rule_id]} and {origin})")
        self._seen_ids[rule_id] = origin

    def _check_canonical(self, canonical_id: str, origin: str):
        if canonical_id not in self.index:
            raise ConfigurationError(f"{origin} references unknown canonical id {canonical_id}")

    def _compile_overrides(self, document: OverridesDocument) -> Tuple[CompiledRule, ...]:
        compiled = []
        for position, override in enumerate(document.overrides):
            rule_id = override.id or f"override:{position + 1}"
            origin = f"override {rule_id}"
            self._claim_id(rule_id, origin)
            self._check_canonical(override.canonical_id, origin)
            exact, regex = _compile_matcher(override.pattern_or_exact, override.match, origin)
            compiled.append(CompiledRule(
                rule_id=rule_id,
                tier=TIER_OVERRIDE,
                canonical_id=override.canonical_id,
                confidence=(override.confidence if override.confidence is not None
                            else self.settings.override_confidence),
                priority=0,
                order=position,
                exact=exact,
                regex=regex,
                source=source_key(override.source) if override.source else None,
                created_at=_as_utc(override.created_at),
            ))
        # Most recent first; on equal timestamps the later entry supersedes.
        return tuple(sorted(compiled, key=lambda r: (r.created_at, r.order), reverse=True))

    # =============================================================================
    # LOOKUPS USED BY THE DOMAIN CLASSIFIER
    # =============================================================================

    def find_override(self, normalized_text: str, source: Optional[str] = None) -> Optional[RuleHit]:
        """The most recent override matching the text, regardless of domain."""
        if not normalized_text:
            return None
        key = source_key(source)
        for rule in self._overrides:
            if not rule.applies_to_source(key):
                continue
            matched = rule.match(normalized_text)
            if matched is not None:
                return rule.to_hit(matched)
        return None

    def match_domain_rules(self, normalized_text: str, domain: Domain) -> Optional[RuleHit]:
        """First domain-scoped rule for `domain` matching the text."""
        if not normalized_text:
            return None
        for rule in self.rules_for_tier(TIER_DOMAIN, domain):
            matched = rule.match(normalized_text)
            if matched is not None:
                return rule.to_hit(matched)
        return None

    # =============================================================================
    # HARD-MAP EVALUATION
    # =============================================================================

    def evaluate_hard_maps(self, normalized_text: str, domain: Domain,
                           source: Optional[str] = None) -> Optional[RuleHit]:
        """
        Evaluates the rule tiers for one input.

        Args:
            normalized_text (str): Output of the normalizer.
            domain (Domain): The resolved domain. Hits on specialties of the
                other domain are skipped and evaluation continues.
            source (str): Caller's source tag, selects the source-scoped rules.

        Returns:
            RuleHit or None: The first hit, with the rule's literal confidence.
        """
        if not normalized_text:
            return None
        key = source_key(source)
        for tier in TIER_ORDER:
            for rule in self.rules_for_tier(tier, domain, source):
                if not rule.applies_to_source(key):
                    continue
                matched = rule.match(normalized_text)
                if matched is None:
                    continue
                if self.index.domain_of(rule.canonical_id) is not domain:
                    logger.warning(
                        f"Skipping {tier} rule {rule.rule_id}: {rule.canonical_id} is outside "
                        f"the resolved {domain.value} domain for '{normalized_text}'"
                    )
                    continue
                logger.debug(f"Hard map {rule.rule_id} ({tier}) -> {rule.canonical_id} for '{normalized_text}'")
                return rule.to_hit(matched)
        return None

    def rules_for_tier(self, tier: str, domain: Optional[Domain] = None,
                       source: Optional[str] = None) -> Tuple[CompiledRule, ...]:
        """Compiled rules of one tier in evaluation order."""
        if tier == TIER_OVERRIDE:
            return self._overrides
        if tier == TIER_SOURCE:
            return self._source_rules.get(source_key(source), ())
        if tier == TIER_DOMAIN:
            return self._domain_rules.get(domain, ()) if domain else ()
        if tier == TIER_GLOBAL:
            return self._global_rules
        raise KeyError(tier)

# --- END OF FILE rules_engine.py ---
