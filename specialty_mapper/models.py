"""
Runtime records passed between the pipeline stages and returned to callers.

Everything here is immutable. Explainability data (rules hit, tokens matched,
candidates) is built as plain return values of each stage and collected into
the final Decision.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .schemas import Domain

DECIDED = "DECIDED"
UNDECIDED = "UNDECIDED"


@dataclass(frozen=True)
class RawInput:
    """One mapping request, as produced by a source adapter or a caller."""
    source: str
    raw_name: str
    provider_type: Optional[str] = None
    domain_hint: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'source': self.source,
            'raw_name': self.raw_name,
            'provider_type': self.provider_type,
            'domain_hint': self.domain_hint,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'RawInput':
        return cls(
            source=str(data.get('source') or ''),
            raw_name=str(data.get('raw_name') or ''),
            provider_type=data.get('provider_type'),
            domain_hint=data.get('domain_hint'),
        )


@dataclass(frozen=True)
class ScoredCandidate:
    canonical_id: str
    score: float
    reasons: Tuple[str, ...] = ()
    matched_tokens: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        return {
            'canonical_id': self.canonical_id,
            'score': self.score,
            'reasons': list(self.reasons),
        }


@dataclass(frozen=True)
class RuleHit:
    rule_id: str
    canonical_id: str
    confidence: float
    tier: str
    matched_text: str = ""


@dataclass(frozen=True)
class Decision:
    """
    The terminal result of one mapping request.

    `decided_canonical_id` is None for an undecided outcome; in that case the
    remaining fields carry enough provenance for a reviewer to finish the
    mapping by hand.
    """
    input: RawInput
    decided_canonical_id: Optional[str]
    confidence: float
    domain: Domain
    parent_bucket: Optional[str] = None
    rules_hit: Tuple[str, ...] = ()
    tokens_matched: Tuple[str, ...] = ()
    candidates: Tuple[ScoredCandidate, ...] = ()
    domain_signal: str = "default"
    notes: str = ""

    @property
    def status(self) -> str:
        return DECIDED if self.decided_canonical_id is not None else UNDECIDED

    @property
    def top_candidate(self) -> Optional[ScoredCandidate]:
        return self.candidates[0] if self.candidates else None

    def to_dict(self) -> Dict:
        return {
            'input': self.input.to_dict(),
            'decided_canonical_id': self.decided_canonical_id,
            'status': self.status,
            'confidence': self.confidence,
            'domain': self.domain.value,
            'domain_signal': self.domain_signal,
            'parent_bucket': self.parent_bucket,
            'rules_hit': list(self.rules_hit),
            'tokens_matched': list(self.tokens_matched),
            'candidates': [c.to_dict() for c in self.candidates],
            'notes': self.notes,
        }


@dataclass(frozen=True)
class DomainEvidence:
    domain: Domain
    signal: str
    detail: str = ""


@dataclass(frozen=True)
class BucketResolution:
    bucket: Optional[str]
    method: str
    matched_synonyms: Tuple[str, ...] = ()
    hint_id: Optional[str] = None
    excluded: Tuple[str, ...] = ()
    synonym_buckets: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def resolved(self) -> bool:
        return self.bucket is not None


def as_raw_inputs(items: List) -> List[RawInput]:
    """Accepts RawInput instances or plain dicts and returns RawInput records."""
    return [item if isinstance(item, RawInput) else RawInput.from_dict(item) for item in items]
