"""
Declared schemas for every configuration document the engine loads.

All documents are validated with pydantic before any index is built. A
validation failure is a configuration error and aborts start-up; nothing in
this module is consulted per request.
"""

import re
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

CANONICAL_ID_PATTERN = r'^[A-Z0-9]+(?:-[A-Z0-9]+)*$'


class Domain(str, Enum):
    ADULT = "ADULT"
    PEDIATRIC = "PEDIATRIC"


class RuleScope(str, Enum):
    GLOBAL = "global"
    DOMAIN = "domain"
    SOURCE = "source"


class MatchType(str, Enum):
    EXACT = "exact"
    REGEX = "regex"


def _compile_check(pattern: str) -> str:
    try:
        re.compile(pattern)
    except re.error as e:
        raise ValueError(f"unparseable pattern {pattern!r}: {e}")
    return pattern


class _ConfigModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')


# =============================================================================
# TAXONOMY
# =============================================================================

class CanonicalSpecialty(_ConfigModel):
    """One taxonomy leaf. `id` is stable and never reused once retired."""
    id: str = Field(..., pattern=CANONICAL_ID_PATTERN)
    domain: Domain
    parent_bucket: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    synonyms: Tuple[str, ...] = ()


class TaxonomyDocument(_ConfigModel):
    version: str = Field(..., min_length=1)
    specialties: Tuple[CanonicalSpecialty, ...] = Field(..., min_length=1)


# =============================================================================
# SYNONYMS, HINTS AND GUARDS
# =============================================================================

class DomainHints(_ConfigModel):
    pediatric: Tuple[str, ...] = ()
    adult: Tuple[str, ...] = ()


class BucketSynonyms(_ConfigModel):
    domain: Domain
    bucket: str = Field(..., min_length=1)
    synonyms: Tuple[str, ...] = ()


class BucketHint(_ConfigModel):
    id: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)
    domain: Domain
    bucket: str = Field(..., min_length=1)

    @field_validator('pattern')
    @classmethod
    def _pattern_compiles(cls, value: str) -> str:
        return _compile_check(value)


class BucketGuard(_ConfigModel):
    domain: Domain
    bucket: str = Field(..., min_length=1)
    tokens: Tuple[str, ...] = Field(..., min_length=1)


class SynonymsDocument(_ConfigModel):
    version: str = Field(..., min_length=1)
    domain_hints: DomainHints = DomainHints()
    parent_buckets: Tuple[BucketSynonyms, ...] = ()
    bucket_hints: Tuple[BucketHint, ...] = ()
    bucket_guards: Tuple[BucketGuard, ...] = ()
    subspecialty_tokens: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)
    specialty_negative_tokens: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)
    source_synonyms: Dict[str, Dict[str, Tuple[str, ...]]] = Field(default_factory=dict)

    @model_validator(mode='after')
    def _unique_hint_ids(self):
        seen = set()
        for hint in self.bucket_hints:
            if hint.id in seen:
                raise ValueError(f"duplicate bucket hint id {hint.id!r}")
            seen.add(hint.id)
        return self


# =============================================================================
# HARD-MAP RULES AND OVERRIDES
# =============================================================================

class HardMapRule(_ConfigModel):
    id: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)
    match: MatchType = MatchType.REGEX
    canonical_id: str = Field(..., pattern=CANONICAL_ID_PATTERN)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    priority: int = 100

    @model_validator(mode='after')
    def _regex_compiles(self):
        if self.match is MatchType.REGEX:
            _compile_check(self.pattern)
        return self


class RulesDocument(_ConfigModel):
    version: str = Field(..., min_length=1)
    scope: RuleScope
    source: Optional[str] = None
    domain: Optional[Domain] = None
    rules: Tuple[HardMapRule, ...] = ()

    @model_validator(mode='after')
    def _scope_fields(self):
        if self.scope is RuleScope.SOURCE and not self.source:
            raise ValueError("source-scoped rules document requires 'source'")
        if self.scope is RuleScope.DOMAIN and self.domain is None:
            raise ValueError("domain-scoped rules document requires 'domain'")
        if self.scope is RuleScope.GLOBAL and (self.source or self.domain):
            raise ValueError("global rules document must not declare 'source' or 'domain'")
        return self


class Override(_ConfigModel):
    """Human-approved mapping. Entries are appended, never edited."""
    id: Optional[str] = None
    pattern_or_exact: str = Field(..., min_length=1)
    match: MatchType = MatchType.EXACT
    canonical_id: str = Field(..., pattern=CANONICAL_ID_PATTERN)
    reason: str = ""
    created_at: datetime
    source: Optional[str] = None
    added_by: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    @model_validator(mode='after')
    def _regex_compiles(self):
        if self.match is MatchType.REGEX:
            _compile_check(self.pattern_or_exact)
        return self


class OverridesDocument(_ConfigModel):
    version: str = Field("0", min_length=1)
    overrides: Tuple[Override, ...] = ()


# =============================================================================
# ENGINE SETTINGS
# =============================================================================

class ScoringWeights(_ConfigModel):
    token: float = Field(0.45, ge=0.0, le=1.0)
    synonym: float = Field(0.25, ge=0.0, le=1.0)
    char_sim: float = Field(0.15, ge=0.0, le=1.0)
    negative: float = Field(-0.35, le=0.0)
    source_hint: float = Field(0.05, ge=0.0, le=1.0)

    @model_validator(mode='after')
    def _check_total(self):
        total = self.token + self.synonym + self.char_sim + self.source_hint
        if abs(total - 1.0) > 0.1 + 1e-9:
            logger.warning(f"Positive scoring weights sum to {total:.2f}; scores will not span [0, 1]")
        return self


class EngineSettings(_ConfigModel):
    preset: str = "default"
    min_decision_threshold: float = Field(0.68, ge=0.0, le=1.0)
    hard_map_confidence: float = Field(0.95, ge=0.0, le=1.0)
    override_confidence: float = Field(1.0, ge=0.0, le=1.0)
    top_n: int = Field(5, ge=1)
    char_similarity: Literal['jaro_winkler', 'token_set_ratio', 'ratio'] = 'jaro_winkler'
    weights: ScoringWeights = ScoringWeights()
    stop_words: Tuple[str, ...] = ('and', 'of', 'the', 'in', 'for', 'with', 'or', 'a', 'an')
    min_token_length: int = Field(2, ge=1)
    max_workers: int = Field(1, ge=1)
