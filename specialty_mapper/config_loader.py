# --- START OF FILE config_loader.py ---

# =============================================================================
# CONFIGURATION DOCUMENT LOADER
# =============================================================================
# Reads the taxonomy, synonym, rule and override documents once at start-up
# and validates each against its declared schema. Any problem here is fatal:
# the engine refuses to serve requests on inconsistent configuration.

import os
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, Union

import yaml
from pydantic import BaseModel, ValidationError

from .schemas import (
    EngineSettings,
    OverridesDocument,
    RulesDocument,
    SynonymsDocument,
    TaxonomyDocument,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent / 'data'

DEFAULT_DATA_CONFIG = {
    'taxonomy': 'taxonomy.json',
    'synonyms': 'synonyms.yaml',
    'rules': [
        'rules/base.yaml',
        'rules/pediatric.yaml',
        'rules/source_mgma.yaml',
        'rules/source_sullivancotter.yaml',
        'rules/source_gallagher.yaml',
    ],
    'overrides': 'overrides.yaml',
}


class ConfigurationError(Exception):
    """Fatal start-up error: the configuration cannot be served."""


@dataclass(frozen=True)
class MappingConfiguration:
    """Every validated document the engine is built from."""
    taxonomy: TaxonomyDocument
    synonyms: SynonymsDocument
    rule_documents: Tuple[RulesDocument, ...]
    overrides: OverridesDocument
    settings: EngineSettings

    def versions(self) -> Dict[str, str]:
        """Document versions keyed by document role, for provenance and fingerprints."""
        versions = {
            'taxonomy': self.taxonomy.version,
            'synonyms': self.synonyms.version,
            'overrides': self.overrides.version,
        }
        for position, document in enumerate(self.rule_documents):
            label = document.scope.value
            if document.source:
                label = f"{label}:{document.source}"
            elif document.domain is not None:
                label = f"{label}:{document.domain.value}"
            versions[f"rules[{position}]:{label}"] = document.version
        return versions


def read_document(path: Union[str, Path]) -> Any:
    """
    Reads one JSON or YAML document from disk.

    Raises:
        ConfigurationError: If the file is missing, unreadable or unparseable.
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() == '.json':
                return json.load(f)
            return yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration document {path}: {e}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot parse configuration document {path}: {e}") from e


def validate_document(model: Type[BaseModel], raw: Any, origin: str) -> BaseModel:
    """Validates a parsed document against its schema."""
    if raw is None:
        raise ConfigurationError(f"{origin}: document is empty")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"{origin}: schema violation: {e}") from e


def load_mapping_configuration(data_dir: Optional[Union[str, Path]] = None,
                               data_config: Optional[Dict] = None,
                               settings: Optional[EngineSettings] = None) -> MappingConfiguration:
    """
    Loads and validates all configuration documents.

    Args:
        data_dir: Directory the document paths are relative to. Defaults to the
                  bundled `data/` directory.
        data_config: Mapping with keys `taxonomy`, `synonyms`, `rules` (list) and
                     `overrides`; missing keys fall back to the bundled layout.
        settings: Validated engine settings. Defaults to EngineSettings().

    Returns:
        MappingConfiguration: The immutable bundle the engine is built from.
    """
    base_dir = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
    layout = dict(DEFAULT_DATA_CONFIG)
    layout.update({k: v for k, v in (data_config or {}).items() if v})

    if not base_dir.is_dir():
        raise ConfigurationError(f"Configuration data directory not found: {base_dir}")

    taxonomy_path = base_dir / layout['taxonomy']
    taxonomy = validate_document(TaxonomyDocument, read_document(taxonomy_path), str(taxonomy_path))

    synonyms_path = base_dir / layout['synonyms']
    synonyms = validate_document(SynonymsDocument, read_document(synonyms_path), str(synonyms_path))

    rule_paths = layout['rules']
    if isinstance(rule_paths, str):
        rule_paths = [rule_paths]
    rule_documents = []
    for relative in rule_paths:
        rules_path = base_dir / relative
        rule_documents.append(validate_document(RulesDocument, read_document(rules_path), str(rules_path)))

    overrides = OverridesDocument()
    overrides_path = base_dir / layout['overrides']
    if os.path.exists(overrides_path):
        overrides = validate_document(OverridesDocument, read_document(overrides_path), str(overrides_path))
    else:
        logger.warning(f"Overrides document not found at {overrides_path}; continuing without overrides")

    configuration = MappingConfiguration(
        taxonomy=taxonomy,
        synonyms=synonyms,
        rule_documents=tuple(rule_documents),
        overrides=overrides,
        settings=settings or EngineSettings(),
    )
    logger.info(
        f"Loaded taxonomy v{taxonomy.version} ({len(taxonomy.specialties)} specialties), "
        f"{len(rule_documents)} rule documents, {len(overrides.overrides)} overrides from {base_dir}"
    )
    return configuration

# --- END OF FILE config_loader.py ---
