#!/usr/bin/env python3
"""
Specialty Candidate Scoring Engine

Handles all fuzzy scoring for inputs that no hard-map rule decided:
- Token overlap against the candidate's name and synonym tokens
- Full synonym phrase hits
- Character similarity (Jaro-Winkler, token-set ratio or plain ratio)
- Negative-token penalties
- Source-specific synonym hints

Candidates are always the specialties of a single (domain, parent bucket),
so a score can never cross the domain partition.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

import Levenshtein
from fuzzywuzzy import fuzz

from .config_loader import ConfigurationError
from .models import ScoredCandidate
from .preprocessing import contains_phrase, normalize, tokenize
from .rules_engine import source_key
from .schemas import CanonicalSpecialty, Domain, EngineSettings, SynonymsDocument
from .taxonomy_index import TaxonomyIndex

logger = logging.getLogger(__name__)

SCORE_PRECISION = 6


class _CandidateProfile:
    """Precomputed, normalized matching material for one specialty."""
    __slots__ = ('specialty', 'phrases', 'tokens', 'negative_tokens')

    def __init__(self, specialty: CanonicalSpecialty, phrases: Tuple[str, ...],
                 tokens: frozenset, negative_tokens: Tuple[str, ...]):
        self.specialty = specialty
        self.phrases = phrases
        self.tokens = tokens
        self.negative_tokens = negative_tokens


class CandidateScorer:
    """Scores every specialty in the resolved bucket against the input."""

    def __init__(self, index: TaxonomyIndex, synonyms: SynonymsDocument, settings: EngineSettings):
        self.index = index
        self.settings = settings
        self.weights = settings.weights
        self._stop_words = frozenset(normalize(word) for word in settings.stop_words)
        self._variants = self._build_variant_map(synonyms.subspecialty_tokens)
        self._phrase_variants = self._build_phrase_variants(synonyms.subspecialty_tokens)
        self._similarity = self._select_similarity(settings.char_similarity)

        for canonical_id in synonyms.specialty_negative_tokens:
            if canonical_id not in index:
                raise ConfigurationError(f"Negative tokens reference unknown canonical id {canonical_id}")

        self._source_synonyms: Dict[str, Dict[str, Tuple[str, ...]]] = {}
        for source, entries in synonyms.source_synonyms.items():
            per_source = {}
            for canonical_id, phrases in entries.items():
                if canonical_id not in index:
                    raise ConfigurationError(
                        f"Source synonyms for {source} reference unknown canonical id {canonical_id}"
                    )
                per_source[canonical_id] = self._normalized_phrases(phrases)
            self._source_synonyms[source_key(source)] = per_source

        self._profiles: Dict[str, _CandidateProfile] = {}
        for domain, bucket in index.buckets():
            for specialty in index.by_parent_bucket(domain, bucket):
                phrases = self._normalized_phrases((specialty.display_name,) + tuple(specialty.synonyms))
                tokens = frozenset(token for phrase in phrases for token in self.content_tokens(phrase))
                negatives = self._normalized_phrases(synonyms.specialty_negative_tokens.get(specialty.id, ()))
                self._profiles[specialty.id] = _CandidateProfile(specialty, phrases, tokens, negatives)

    # =============================================================================
    # SETUP HELPERS
    # =============================================================================

    @staticmethod
    def _build_variant_map(subspecialty_tokens: Dict[str, Iterable[str]]) -> Dict[str, str]:
        variants = {}
        for token, spellings in subspecialty_tokens.items():
            canonical = normalize(token)
            if not canonical:
                continue
            variants[canonical] = canonical
            for spelling in spellings:
                variant = normalize(spelling)
                if variant and ' ' not in variant:
                    variants.setdefault(variant, canonical)
        return variants

    @staticmethod
    def _build_phrase_variants(subspecialty_tokens: Dict[str, Iterable[str]]) -> List[Tuple[Pattern, str]]:
        """Multi-word spellings ("non invasive") folded into their single canonical token."""
        phrases = {}
        for token, spellings in subspecialty_tokens.items():
            canonical = normalize(token)
            if not canonical or ' ' in canonical:
                continue
            for spelling in spellings:
                variant = normalize(spelling)
                if ' ' in variant:
                    phrases.setdefault(variant, canonical)
        ordered = sorted(phrases.items(), key=lambda item: -len(item[0]))
        return [(re.compile(r'(?<!\S)' + re.escape(variant) + r'(?!\S)'), canonical)
                for variant, canonical in ordered]

    @staticmethod
    def _select_similarity(name: str):
        if name == 'jaro_winkler':
            return Levenshtein.jaro_winkler
        if name == 'token_set_ratio':
            return lambda a, b: fuzz.token_set_ratio(a, b) / 100.0
        return lambda a, b: fuzz.ratio(a, b) / 100.0

    def canonicalize_phrases(self, normalized_text: str) -> str:
        for pattern, canonical in self._phrase_variants:
            normalized_text = pattern.sub(canonical, normalized_text)
        return normalized_text

    def _normalized_phrases(self, values: Iterable[str]) -> Tuple[str, ...]:
        phrases = []
        for value in values:
            phrase = self.canonicalize_phrases(normalize(value))
            if phrase and phrase not in phrases:
                phrases.append(phrase)
        return tuple(phrases)

    def content_tokens(self, normalized_text: str) -> List[str]:
        """Tokens that count towards overlap, with subspecialty variants folded."""
        tokens = []
        for token in tokenize(normalized_text):
            if token in self._stop_words or len(token) < self.settings.min_token_length:
                continue
            token = self._variants.get(token, token)
            if token not in tokens:
                tokens.append(token)
        return tokens

    # =============================================================================
    # SCORE COMPONENTS
    # =============================================================================

    def calculate_token_score(self, input_tokens: List[str], profile: _CandidateProfile) -> Tuple[float, List[str]]:
        """Share of the input's content tokens found among the candidate's tokens."""
        if not input_tokens:
            return 0.0, []
        matched = [token for token in input_tokens if token in profile.tokens]
        return len(matched) / len(input_tokens), matched

    def calculate_synonym_score(self, normalized_text: str, profile: _CandidateProfile) -> float:
        return 1.0 if any(contains_phrase(normalized_text, phrase) for phrase in profile.phrases) else 0.0

    def calculate_char_similarity(self, normalized_text: str, profile: _CandidateProfile) -> float:
        if not profile.phrases:
            return 0.0
        return max(self._similarity(normalized_text, phrase) for phrase in profile.phrases)

    def count_negative_tokens(self, normalized_text: str, profile: _CandidateProfile) -> int:
        return sum(1 for token in profile.negative_tokens if contains_phrase(normalized_text, token))

    def calculate_source_hint_score(self, normalized_text: str, canonical_id: str, source: Optional[str]) -> float:
        phrases = self._source_synonyms.get(source_key(source), {}).get(canonical_id, ())
        return 1.0 if any(contains_phrase(normalized_text, phrase) for phrase in phrases) else 0.0

    # =============================================================================
    # CANDIDATE SCORING (ENTRY POINT)
    # =============================================================================

    def score_candidate(self, normalized_text: str, input_tokens: List[str],
                        profile: _CandidateProfile, source: Optional[str] = None) -> ScoredCandidate:
        token_score, matched = self.calculate_token_score(input_tokens, profile)
        synonym_score = self.calculate_synonym_score(normalized_text, profile)
        char_score = self.calculate_char_similarity(normalized_text, profile)
        negative_count = self.count_negative_tokens(normalized_text, profile)
        source_score = self.calculate_source_hint_score(normalized_text, profile.specialty.id, source)

        score = (
            self.weights.token * token_score +
            self.weights.synonym * synonym_score +
            self.weights.char_sim * char_score +
            self.weights.negative * negative_count +
            self.weights.source_hint * source_score
        )
        score = round(max(0.0, min(1.0, score)), SCORE_PRECISION)

        reasons = []
        if token_score > 0:
            reasons.append(f"token:{token_score:.2f}")
        if synonym_score > 0:
            reasons.append(f"synonym:{synonym_score:.2f}")
        if char_score > 0:
            reasons.append(f"charsim:{char_score:.2f}")
        if negative_count:
            reasons.append(f"negative:{negative_count}")
        if source_score > 0:
            reasons.append(f"sourcehint:{source_score:.2f}")

        return ScoredCandidate(
            canonical_id=profile.specialty.id,
            score=score,
            reasons=tuple(reasons),
            matched_tokens=tuple(matched),
        )

    def score_candidates(self, normalized_text: str, domain: Domain, parent_bucket: Optional[str],
                         source: Optional[str] = None) -> List[ScoredCandidate]:
        """
        Scores all specialties of (domain, parent_bucket).

        Returns:
            List[ScoredCandidate]: Sorted by descending score. Equal scores keep
            taxonomy file order (stable sort).
        """
        if not normalized_text or not parent_bucket:
            return []
        normalized_text = self.canonicalize_phrases(normalized_text)
        input_tokens = self.content_tokens(normalized_text)
        scored = [
            self.score_candidate(normalized_text, input_tokens, self._profiles[specialty.id], source)
            for specialty in self.index.by_parent_bucket(domain, parent_bucket)
        ]
        return sorted(scored, key=lambda candidate: -candidate.score)

# --- END OF FILE scoring_engine.py ---
