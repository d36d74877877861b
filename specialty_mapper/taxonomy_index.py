"""
In-memory lookup structures over the canonical taxonomy.

The index is built once from the validated taxonomy and synonym documents and
is read-only afterwards. Every phrase it stores has been passed through the
normalizer, so lookups take normalized text.
"""

import logging
from collections import OrderedDict
from types import MappingProxyType
from typing import Dict, List, Optional, Tuple

from .config_loader import ConfigurationError
from .preprocessing import normalize
from .schemas import CanonicalSpecialty, Domain, SynonymsDocument, TaxonomyDocument

logger = logging.getLogger(__name__)

BucketKey = Tuple[Domain, str]


class TaxonomyIndex:
    """
    Lookup by canonical id, by (domain, parent bucket) and by synonym phrase.

    The synonym map is fed by bucket names, the bucket synonym lists of the
    synonym document, specialty display names and specialty synonyms. A phrase
    may point at exactly one (domain, bucket) pair; anything else is a
    configuration error.
    """

    def __init__(self, taxonomy: TaxonomyDocument, synonyms: Optional[SynonymsDocument] = None):
        self.version = taxonomy.version
        self._by_id: Dict[str, CanonicalSpecialty] = {}
        self._positions: Dict[str, int] = {}
        buckets: Dict[BucketKey, List[CanonicalSpecialty]] = OrderedDict()
        synonym_map: Dict[str, BucketKey] = {}
        synonym_origin: Dict[str, str] = {}

        for position, specialty in enumerate(taxonomy.specialties):
            if specialty.id in self._by_id:
                raise ConfigurationError(f"Duplicate canonical id in taxonomy: {specialty.id}")
            self._by_id[specialty.id] = specialty
            self._positions[specialty.id] = position
            buckets.setdefault((specialty.domain, specialty.parent_bucket), []).append(specialty)

        def register(phrase: str, key: BucketKey, origin: str):
            normalized = normalize(phrase)
            if not normalized:
                return
            existing = synonym_map.get(normalized)
            if existing is not None and existing != key:
                raise ConfigurationError(
                    f"Ambiguous synonym '{normalized}' maps to {existing[0].value}/{existing[1]} "
                    f"({synonym_origin[normalized]}) and {key[0].value}/{key[1]} ({origin})"
                )
            synonym_map[normalized] = key
            synonym_origin.setdefault(normalized, origin)

        for key in buckets:
            register(key[1], key, 'bucket name')

        if synonyms is not None:
            for entry in synonyms.parent_buckets:
                key = (entry.domain, entry.bucket)
                if key not in buckets:
                    raise ConfigurationError(
                        f"Bucket synonyms reference unknown bucket {entry.domain.value}/{entry.bucket}"
                    )
                for phrase in entry.synonyms:
                    register(phrase, key, 'bucket synonym')

        for specialty in taxonomy.specialties:
            key = (specialty.domain, specialty.parent_bucket)
            register(specialty.display_name, key, f'display name of {specialty.id}')
            for phrase in specialty.synonyms:
                register(phrase, key, f'synonym of {specialty.id}')

        self._buckets = MappingProxyType({key: tuple(members) for key, members in buckets.items()})
        self._synonym_map = MappingProxyType(synonym_map)
        self._domain_synonyms = MappingProxyType({
            domain: tuple((phrase, key[1]) for phrase, key in synonym_map.items() if key[0] is domain)
            for domain in Domain
        })
        logger.info(
            f"Taxonomy index v{self.version}: {len(self._by_id)} specialties, "
            f"{len(self._buckets)} buckets, {len(self._synonym_map)} synonym phrases"
        )

    def by_id(self, canonical_id: str) -> Optional[CanonicalSpecialty]:
        return self._by_id.get(canonical_id)

    def by_parent_bucket(self, domain: Domain, bucket: str) -> Tuple[CanonicalSpecialty, ...]:
        """Specialties of one bucket, in taxonomy file order."""
        return self._buckets.get((domain, bucket), ())

    def synonym_to_bucket(self, token: str) -> Optional[BucketKey]:
        return self._synonym_map.get(token)

    def synonyms_for_domain(self, domain: Domain) -> Tuple[Tuple[str, str], ...]:
        """(phrase, bucket) pairs whose bucket lives in `domain`."""
        return self._domain_synonyms[domain]

    def has_bucket(self, domain: Domain, bucket: str) -> bool:
        return (domain, bucket) in self._buckets

    def buckets(self) -> Tuple[BucketKey, ...]:
        return tuple(self._buckets)

    def position(self, canonical_id: str) -> int:
        return self._positions[canonical_id]

    def domain_of(self, canonical_id: str) -> Optional[Domain]:
        specialty = self._by_id.get(canonical_id)
        return specialty.domain if specialty else None

    def __contains__(self, canonical_id: str) -> bool:
        return canonical_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)
