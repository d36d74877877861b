# --- START OF FILE bucket_resolver.py ---

# =============================================================================
# PARENT-BUCKET RESOLVER
# =============================================================================
# Narrows an input to a single parent bucket inside its domain:
#   1. whole-token synonym hits scoped to the domain
#   2. negative-token guards remove buckets the text argues against
#   3. exactly one surviving synonym bucket -> resolved
#   4. otherwise ordered regex hints, first unguarded match wins
#   5. otherwise None (ambiguous or unmatched), never a guess

import re
import logging
from typing import Dict, List, Pattern, Set, Tuple

from .config_loader import ConfigurationError
from .models import BucketResolution
from .preprocessing import contains_phrase, normalize
from .schemas import Domain, SynonymsDocument
from .taxonomy_index import TaxonomyIndex

logger = logging.getLogger(__name__)

METHOD_SYNONYM = 'synonym'
METHOD_REGEX_HINT = 'regex_hint'
METHOD_AMBIGUOUS = 'ambiguous'
METHOD_UNMATCHED = 'unmatched'
METHOD_EMPTY = 'empty'


class ParentBucketResolver:

    def __init__(self, index: TaxonomyIndex, synonyms: SynonymsDocument):
        self.index = index

        hints: Dict[Domain, List[Tuple[str, Pattern, str]]] = {domain: [] for domain in Domain}
        for hint in synonyms.bucket_hints:
            if not index.has_bucket(hint.domain, hint.bucket):
                raise ConfigurationError(
                    f"Bucket hint {hint.id} references unknown bucket {hint.domain.value}/{hint.bucket}"
                )
            hints[hint.domain].append((hint.id, re.compile(hint.pattern, re.IGNORECASE), hint.bucket))
        self._hints = {domain: tuple(entries) for domain, entries in hints.items()}

        guards: Dict[Tuple[Domain, str], Tuple[str, ...]] = {}
        for guard in synonyms.bucket_guards:
            if not index.has_bucket(guard.domain, guard.bucket):
                raise ConfigurationError(
                    f"Bucket guard references unknown bucket {guard.domain.value}/{guard.bucket}"
                )
            tokens = tuple(t for t in (normalize(token) for token in guard.tokens) if t)
            key = (guard.domain, guard.bucket)
            guards[key] = guards.get(key, ()) + tokens
        self._guards = guards

    def _guarded(self, normalized_text: str, domain: Domain, bucket: str) -> bool:
        return any(contains_phrase(normalized_text, token) for token in self._guards.get((domain, bucket), ()))

    def resolve(self, normalized_text: str, domain: Domain) -> BucketResolution:
        """Resolves the bucket and reports how it got there."""
        if not normalized_text:
            return BucketResolution(None, METHOD_EMPTY)

        synonym_buckets: List[str] = []
        matched: List[str] = []
        for phrase, bucket in self.index.synonyms_for_domain(domain):
            if contains_phrase(normalized_text, phrase):
                matched.append(phrase)
                if bucket not in synonym_buckets:
                    synonym_buckets.append(bucket)

        excluded: Set[str] = {b for b in synonym_buckets if self._guarded(normalized_text, domain, b)}
        surviving = [b for b in synonym_buckets if b not in excluded]

        if len(surviving) == 1:
            return BucketResolution(
                bucket=surviving[0],
                method=METHOD_SYNONYM,
                matched_synonyms=tuple(matched),
                excluded=tuple(sorted(excluded)),
                synonym_buckets=tuple(synonym_buckets),
            )

        for hint_id, pattern, bucket in self._hints[domain]:
            if not pattern.search(normalized_text):
                continue
            if self._guarded(normalized_text, domain, bucket):
                excluded.add(bucket)
                continue
            return BucketResolution(
                bucket=bucket,
                method=METHOD_REGEX_HINT,
                matched_synonyms=tuple(matched),
                hint_id=hint_id,
                excluded=tuple(sorted(excluded)),
                synonym_buckets=tuple(synonym_buckets),
            )

        method = METHOD_AMBIGUOUS if len(surviving) > 1 else METHOD_UNMATCHED
        logger.debug(f"No parent bucket for '{normalized_text}' in {domain.value}: {method} {surviving}")
        return BucketResolution(
            bucket=None,
            method=method,
            matched_synonyms=tuple(matched),
            excluded=tuple(sorted(excluded)),
            synonym_buckets=tuple(synonym_buckets),
        )

    def resolve_parent_bucket(self, normalized_text: str, domain: Domain):
        return self.resolve(normalized_text, domain).bucket

# --- END OF FILE bucket_resolver.py ---
