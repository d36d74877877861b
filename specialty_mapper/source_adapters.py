"""
Source adapters: turn one survey row into a RawInput.

Each survey export names its columns differently. Adapters are plain
functions `(row) -> RawInput | None` that absorb those quirks so the engine
never sees a source file format. A row without a specialty value yields None
and is skipped by callers.
"""

import logging
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence

from .models import RawInput

logger = logging.getLogger(__name__)

SourceAdapter = Callable[[Mapping[str, str]], Optional[RawInput]]

SPECIALTY_KEYWORDS = (
    'specialty', 'speciality', 'medical specialty', 'physician specialty',
    'department', 'service', 'division',
)
PEDIATRIC_KEYWORDS = ('pediatric', 'paediatric', 'peds', 'population', 'age group', 'patient age')
PROVIDER_TYPE_KEYWORDS = ('provider type', 'providertype', 'provider_type', 'physician type', 'clinician type')

PEDIATRIC_VALUES = ('pediatric', 'paediatric', 'ped', 'child', 'yes', 'y', 'true', '1')
ADULT_VALUES = ('adult',)


def _clean(value) -> str:
    return str(value).strip() if value is not None else ''


def find_column(headers: Iterable[str], keywords: Sequence[str],
                exclude: Sequence[str] = ()) -> Optional[str]:
    """First header containing any keyword (case-insensitive), skipping `exclude`."""
    for header in headers:
        if header is None or header in exclude:
            continue
        lowered = header.lower().strip()
        if any(keyword in lowered for keyword in keywords):
            return header
    return None


def _first_present(row: Mapping[str, str], names: Sequence[str]) -> Optional[str]:
    lowered = {(key or '').lower().strip(): key for key in row}
    for name in names:
        key = lowered.get(name.lower())
        if key is not None:
            return key
    return None


def pediatric_flag_to_hint(value: Optional[str]) -> Optional[str]:
    """Reads a pediatric/population column value as a domain hint."""
    lowered = _clean(value).lower()
    if not lowered:
        return None
    if lowered in ADULT_VALUES or lowered.startswith('adult'):
        return 'ADULT'
    if lowered in PEDIATRIC_VALUES or 'pediatric' in lowered or 'paediatric' in lowered or lowered.startswith('ped'):
        return 'PEDIATRIC'
    return None


def _build_input(row: Mapping[str, str], source: str, specialty_column: Optional[str],
                 provider_column: Optional[str], pediatric_column: Optional[str]) -> Optional[RawInput]:
    if specialty_column is None:
        return None
    raw_name = _clean(row.get(specialty_column))
    if not raw_name:
        return None
    provider_type = _clean(row.get(provider_column)) if provider_column else ''
    domain_hint = pediatric_flag_to_hint(row.get(pediatric_column)) if pediatric_column else None
    return RawInput(
        source=source,
        raw_name=raw_name,
        provider_type=provider_type or None,
        domain_hint=domain_hint,
    )


def generic_adapter(row: Mapping[str, str], source: str = 'Generic') -> Optional[RawInput]:
    """Header-sniffing adapter for exports without a dedicated adapter."""
    headers = list(row)
    specialty = find_column(headers, SPECIALTY_KEYWORDS)
    if specialty is None:
        logger.debug(f"No specialty column among headers: {headers}")
    provider = find_column(headers, PROVIDER_TYPE_KEYWORDS, exclude=[specialty])
    pediatric = find_column(headers, PEDIATRIC_KEYWORDS, exclude=[specialty, provider])
    return _build_input(row, source, specialty, provider, pediatric)


def _named_adapter(source: str, specialty_columns: Sequence[str],
                   provider_columns: Sequence[str] = (),
                   pediatric_columns: Sequence[str] = ()) -> SourceAdapter:
    """Adapter that prefers the source's documented columns and falls back to sniffing."""
    def adapter(row: Mapping[str, str]) -> Optional[RawInput]:
        specialty = _first_present(row, specialty_columns)
        if specialty is None:
            return generic_adapter(row, source=source)
        provider = _first_present(row, provider_columns) or find_column(row, PROVIDER_TYPE_KEYWORDS, [specialty])
        pediatric = _first_present(row, pediatric_columns)
        return _build_input(row, source, specialty, provider, pediatric)

    adapter.__name__ = f"{source.lower()}_adapter"
    adapter.__doc__ = f"Row adapter for {source} survey exports."
    return adapter


gallagher_adapter = _named_adapter(
    'Gallagher',
    specialty_columns=('Specialty', 'Specialty Description', 'Position Title'),
    provider_columns=('Provider Type', 'Position Type'),
    pediatric_columns=('Pediatric', 'Population'),
)

sullivancotter_adapter = _named_adapter(
    'SullivanCotter',
    specialty_columns=('Specialty', 'Benchmark Specialty', 'SC Specialty'),
    provider_columns=('Provider Type', 'Provider Category'),
    pediatric_columns=('Pediatric Flag', 'Pediatric'),
)

mgma_adapter = _named_adapter(
    'MGMA',
    specialty_columns=('Specialty', 'MGMA Specialty', 'Specialty Name'),
    provider_columns=('Provider Type', 'Provider Category'),
    pediatric_columns=('Population', 'Pediatric'),
)

ADAPTERS: Dict[str, SourceAdapter] = {
    'gallagher': gallagher_adapter,
    'sullivancotter': sullivancotter_adapter,
    'mgma': mgma_adapter,
    'generic': generic_adapter,
}


def get_source_adapter(name: str) -> SourceAdapter:
    """
    Looks up an adapter by source name (case-insensitive).

    Raises:
        KeyError: Unknown adapter; the message lists the known names.
    """
    key = (name or '').strip().lower().replace(' ', '').replace('-', '')
    if key not in ADAPTERS:
        raise KeyError(f"Unknown source adapter '{name}'. Known adapters: {', '.join(sorted(ADAPTERS))}")
    return ADAPTERS[key]

